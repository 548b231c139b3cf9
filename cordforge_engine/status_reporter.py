from typing import Optional
import httpx

from .build import StatusMessage
from .logger_setup import logger

SECRET_HEADER = "X-Build-Secret"


class StatusReporter:
    """Posts build status messages to the app's webhook.

    Reporting is advisory: any error while sending, and non-2xx responses, are logged
    and dropped so a flaky webhook never changes the outcome of a build.
    """

    def __init__(self, webhook_url: str, secret: str, client: Optional[httpx.Client] = None, timeout: float = 10.0):
        self.webhook_url = webhook_url
        self.secret = secret
        self.client = client
        self.timeout = timeout

    def report(self, message: StatusMessage) -> bool:
        headers = {"Content-Type": "application/json", SECRET_HEADER: self.secret}
        body = message.to_json()
        try:
            if self.client is not None:
                response = self.client.post(self.webhook_url, content=body, headers=headers)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.post(self.webhook_url, content=body, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning(f"Webhook rejected '{message.status.value}' update for build {message.build_id}: HTTP {e.response.status_code}")
            return False
        except httpx.HTTPError as e:
            logger.warning(f"Failed to send '{message.status.value}' update for build {message.build_id}: {e}")
            return False
        except Exception as e:
            # Malformed URLs and unencodable headers never reach the transport
            logger.warning(f"Could not send '{message.status.value}' update for build {message.build_id}: {type(e).__name__}: {e}")
            return False
        logger.debug(f"Sent '{message.status.value}' update for build {message.build_id}")
        return True
