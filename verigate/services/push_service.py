"""
verigate/services/push_service.py

Purpose: Push challenge delivery

- Sends a registration challenge to a device push token via the push gateway
- Fire-and-forget: delivery failures are logged and counted, never raised
"""

import httpx
from typing import Dict, Any, Optional, Protocol

from verigate.core import metrics
from verigate.core.config import settings
from verigate.core.logging import get_logger
from verigate.utils.client_utils import PushTokenType

logger = get_logger(__name__)


class PushNotificationSender(Protocol):
    async def send_registration_challenge(
        self,
        token: str,
        token_type: PushTokenType,
        challenge: str,
    ) -> Dict[str, Any]: ...


class PushGatewayService:
    """Sends registration challenges through the push gateway"""

    def __init__(self, base_url: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = (base_url or settings.PUSH_GATEWAY_URL).rstrip("/")
        self.api_key = settings.PUSH_GATEWAY_API_KEY
        self.timeout = settings.PUSH_TIMEOUT_SECONDS
        self._transport = transport

    async def send_registration_challenge(
        self,
        token: str,
        token_type: PushTokenType,
        challenge: str,
    ) -> Dict[str, Any]:
        """
        Delivers a challenge to the device.

        Args:
            token: Device push token
            token_type: apn or fcm
            challenge: Hex challenge the client must echo back

        Returns:
            {
                "success": True/False,
                "message_id": "Optional gateway message id",
                "error": "Optional error message"
            }
        """
        url = f"{self.base_url}/v1/challenges"
        payload = {
            "token": token,
            "tokenType": token_type.value,
            "challenge": challenge,
        }
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            logger.info(f"Sending push challenge via {token_type.value}")

            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.post(
                    url,
                    json=payload,
                    headers=headers,
                    timeout=self.timeout
                )

            if response.status_code in [200, 201, 202]:
                metrics.increment(metrics.PUSH_CHALLENGE_DELIVERY_COUNTER, success=True, token_type=token_type.value)
                return {
                    "success": True,
                    "message_id": _message_id(response),
                }

            logger.error(f"Push gateway error: {response.status_code}")
            metrics.increment(metrics.PUSH_CHALLENGE_DELIVERY_COUNTER, success=False, token_type=token_type.value)
            return {
                "success": False,
                "error": f"Push gateway error: {response.status_code}"
            }

        except httpx.TimeoutException:
            logger.error("Push gateway timeout")
            metrics.increment(metrics.PUSH_CHALLENGE_DELIVERY_COUNTER, success=False, token_type=token_type.value)
            return {
                "success": False,
                "error": "Push gateway timeout"
            }
        except Exception as e:
            logger.error(f"Error sending push challenge: {e}", exc_info=True)
            metrics.increment(metrics.PUSH_CHALLENGE_DELIVERY_COUNTER, success=False, token_type=token_type.value)
            return {
                "success": False,
                "error": str(e)
            }


def _message_id(response: httpx.Response) -> Optional[str]:
    # The gateway has accepted the push by now; the body is informational only
    try:
        result = response.json()
    except ValueError:
        return None
    if not isinstance(result, dict):
        return None
    return result.get("id")


# Singleton instance
push_service = PushGatewayService()
