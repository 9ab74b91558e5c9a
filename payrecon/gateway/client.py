# payrecon/gateway/client.py
"""
Outbound client for the Grow (Meshulam) light server API.

All calls are form-encoded POSTs. A successful reply looks like
``{"status": "1", "data": {...}}``; failures carry ``err.code`` and
``err.message``.
"""

import logging
import time
from dataclasses import dataclass

import requests
from flask import current_app

from payrecon.errors import GatewayError

logger = logging.getLogger(__name__)

CREATE_PAYMENT_PROCESS = "createPaymentProcess"
APPROVE_TRANSACTION = "approveTransaction"

# Server error, rate limit
RETRYABLE_ERROR_CODES = frozenset({5001, 2002})
# Invalid params, auth failure, bad page code, duplicate
NON_RETRYABLE_ERROR_CODES = frozenset({1001, 1002, 1003, 2001})


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    initial_delay: float = 1.0
    backoff_multiplier: float = 2.0
    max_delay: float = 10.0

    @classmethod
    def from_config(cls, config):
        return cls(
            max_attempts=config.get("GATEWAY_MAX_ATTEMPTS", 3),
            initial_delay=config.get("GATEWAY_INITIAL_DELAY", 1.0),
            backoff_multiplier=config.get("GATEWAY_BACKOFF_MULTIPLIER", 2.0),
            max_delay=config.get("GATEWAY_MAX_DELAY", 10.0),
        )

    def delay_after(self, attempt):
        """Seconds to wait after the given (1-based) failed attempt."""
        delay = self.initial_delay * (self.backoff_multiplier ** (attempt - 1))
        return min(delay, self.max_delay)


@dataclass
class PaymentProcess:
    url: str
    process_id: str
    process_token: str


class _RetryableFailure(Exception):
    pass


class GatewayClient:
    def __init__(
        self,
        base_url,
        page_code,
        user_code="",
        retry_policy=None,
        timeout=15.0,
        session=None,
        sleep=time.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.page_code = page_code
        self.user_code = user_code
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout = timeout
        self.session = session or requests.Session()
        self.sleep = sleep

    @classmethod
    def from_config(cls, config=None, session=None, sleep=time.sleep):
        config = config if config is not None else current_app.config
        return cls(
            base_url=config["GROW_API_BASE_URL"],
            page_code=config["GROW_PAGE_CODE"],
            user_code=config.get("GROW_USER_ID", ""),
            retry_policy=RetryPolicy.from_config(config),
            timeout=config.get("GATEWAY_TIMEOUT", 15.0),
            session=session,
            sleep=sleep,
        )

    def _post(self, endpoint, payload):
        response = self.session.post(
            f"{self.base_url}/{endpoint}",
            data=payload,
            timeout=self.timeout,
        )
        response.raise_for_status()
        body = response.json()
        if not isinstance(body, dict):
            raise ValueError(f"Unexpected response body from {endpoint}")
        return body

    def call_with_retry(self, endpoint, payload):
        """
        POST to the processor, retrying transport failures and retryable
        processor codes with exponential backoff.

        Non-retryable and unrecognised processor codes abort at once.
        Returns the successful response body.
        """
        policy = self.retry_policy
        last_error = None

        for attempt in range(1, policy.max_attempts + 1):
            try:
                try:
                    body = self._post(endpoint, payload)
                except (requests.RequestException, ValueError) as exc:
                    raise _RetryableFailure(exc)

                if str(body.get("status")) == "1" and body.get("data") is not None:
                    if attempt > 1:
                        logger.info(
                            "Gateway call succeeded after retry",
                            extra={"endpoint": endpoint, "attempt": attempt},
                        )
                    return body

                err = body.get("err") or {}
                if not isinstance(err, dict):
                    err = {"message": str(err)}
                code = err.get("code")
                message = err.get("message") or "API error"

                if code is not None and code not in RETRYABLE_ERROR_CODES:
                    logger.error(
                        "Gateway rejected request",
                        extra={"endpoint": endpoint, "error_code": code, "error_message": message},
                    )
                    raise GatewayError(message, attempts=attempt, error_code=code)

                raise _RetryableFailure(GatewayError(message, attempts=attempt, error_code=code))

            except _RetryableFailure as failure:
                last_error = failure.args[0]
                logger.warning(
                    "Gateway call failed",
                    extra={
                        "endpoint": endpoint,
                        "attempt": attempt,
                        "max_attempts": policy.max_attempts,
                        "error": str(last_error),
                    },
                )

            if attempt < policy.max_attempts:
                self.sleep(policy.delay_after(attempt))

        raise GatewayError(
            f"{endpoint} failed after {policy.max_attempts} attempts: {last_error}",
            last_error=last_error,
            attempts=policy.max_attempts,
            error_code=getattr(last_error, "error_code", None),
        )

    def create_payment_process(self, payload):
        body = self.call_with_retry(CREATE_PAYMENT_PROCESS, payload)
        data = body.get("data") or {}
        process_id = data.get("processId")
        url = data.get("url")
        if not process_id or not url:
            raise GatewayError("Processor reply missing processId or url", attempts=1)
        return PaymentProcess(
            url=url,
            process_id=str(process_id),
            process_token=str(data.get("processToken") or ""),
        )

    def acknowledge_transaction(self, process_id, process_token, amount):
        """
        Confirm a paid transaction so the processor does not void it.
        Called once; the caller decides what to do on failure.
        """
        payload = {
            "pageCode": self.page_code,
            "processId": process_id,
            "processToken": process_token,
            "sum": str(amount),
        }
        try:
            body = self._post(APPROVE_TRANSACTION, payload)
        except (requests.RequestException, ValueError) as exc:
            raise GatewayError(f"approveTransaction failed: {exc}", last_error=exc, attempts=1)

        if str(body.get("status")) != "1":
            err = body.get("err")
            message = err.get("message") if isinstance(err, dict) else err
            raise GatewayError(
                f"approveTransaction failed: {message or 'Unknown error'}", attempts=1
            )

        logger.info("Transaction acknowledged", extra={"process_id": process_id})
        return body
