from typing import Optional


class ConfigError(RuntimeError):
    """Missing or unusable configuration. Raised at startup, never caught."""


class GatewayError(Exception):
    def __init__(self, status_code: int, body: object):
        self.status_code = status_code
        self.body = body
        super().__init__(f"gateway returned {status_code}: {self.message}")

    @property
    def message(self) -> str:
        if isinstance(self.body, dict) and self.body.get("message"):
            return str(self.body["message"])
        return str(self.body)


class WebhookSignatureError(Exception):
    pass


class MalformedWebhook(Exception):
    pass


class PaymentRecordNotFound(LookupError):
    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"no payment record for order {order_id}")


class PaymentNotSuccessful(Exception):
    def __init__(self, order_id: str, gateway_status: Optional[str]):
        self.order_id = order_id
        self.gateway_status = gateway_status
        super().__init__(
            f"payment for {order_id} is {gateway_status or 'unknown'}"
        )


class TeamFetchFailed(Exception):
    pass


class NotificationFailed(Exception):
    pass


class InvalidOrder(ValueError):
    pass


class DocumentNotFound(LookupError):
    pass


class InvalidIdToken(Exception):
    pass
