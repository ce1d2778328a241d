"""
Push/pull token acquisition with bounded retry.
"""
from typing import Optional

from ..exceptions import TokenAcquisitionError
from ..logging import get_logger
from .models import Token
from .protocols import BridgeClientProtocol

logger = get_logger('storjcli.transfer.tokens')

PUSH = 'PUSH'
PULL = 'PULL'


class TokenBroker:
    """
    Requests single-use tokens from the bridge.
    
    Transient failures are retried immediately; the request's own timeout is
    the only pacing. After ``max_attempts`` failures the last error is
    surfaced to the caller inside a TokenAcquisitionError.
    """
    
    MAX_ATTEMPTS = 7
    
    def __init__(
        self,
        client: BridgeClientProtocol,
        max_attempts: int = MAX_ATTEMPTS
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._client = client
        self._max_attempts = max_attempts
    
    @property
    def max_attempts(self) -> int:
        return self._max_attempts
    
    async def acquire(self, bucket: str, operation: str = PUSH) -> Token:
        """
        Acquire a token for one bucket and direction.
        
        Args:
            bucket: Bucket id
            operation: PUSH or PULL
            
        Returns:
            The token
            
        Raises:
            TokenAcquisitionError: After every attempt failed
        """
        last_error: Optional[Exception] = None
        
        for attempt in range(1, self._max_attempts + 1):
            try:
                token = await self._client.create_token(bucket, operation)
                logger.debug(f"{operation} token acquired on attempt {attempt}")
                return token
            except Exception as e:
                last_error = e
                logger.warning(
                    f"Unable to create {operation} token "
                    f"(attempt {attempt}/{self._max_attempts}): {e}"
                )
        
        raise TokenAcquisitionError(
            f"Failed to create {operation} token after "
            f"{self._max_attempts} attempts: {last_error}",
            last_error=last_error,
            attempts=self._max_attempts
        ) from last_error
