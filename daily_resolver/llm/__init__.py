"""Language model integration: arbitration, providers and tracing."""

from .arbitration import Arbitrator, call_with_retry, parse_arbitration_payload, parse_json_object

__all__ = ["Arbitrator", "call_with_retry", "parse_arbitration_payload", "parse_json_object"]
