from payrecon.gateway.client import GatewayClient, PaymentProcess, RetryPolicy

__all__ = ["GatewayClient", "PaymentProcess", "RetryPolicy"]
