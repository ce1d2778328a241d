"""
Retry-with-exclusion policy for shard downloads.

When a shard source fails, the download restarts while avoiding the peer
that failed. The exclusion set only grows, and the number of restarts is
bounded so a download can't loop forever over a shrinking peer pool.
"""
from typing import Iterable, Optional

from ..exceptions import NetworkTransferError, RetriesExhaustedError
from ..logging import get_logger
from .models import ExclusionSet

logger = get_logger('storjcli.transfer.retry')


class RetryController:
    """
    Decides whether a failed download attempt is restarted.
    
    Args:
        excluded: Peers excluded from the first attempt
        max_retries: Maximum number of restarts
    """
    
    DEFAULT_MAX_RETRIES = 12
    
    def __init__(
        self,
        excluded: Optional[Iterable[str]] = None,
        max_retries: int = DEFAULT_MAX_RETRIES
    ):
        if max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        self._excluded = excluded if isinstance(excluded, ExclusionSet) else ExclusionSet(excluded)
        self._max_retries = max_retries
        self._retries = 0
    
    @property
    def excluded(self) -> ExclusionSet:
        return self._excluded
    
    @property
    def retries(self) -> int:
        """Restarts granted so far."""
        return self._retries
    
    @property
    def max_retries(self) -> int:
        return self._max_retries
    
    def should_retry(self, error: BaseException) -> bool:
        """
        Record a failure and decide whether to restart.
        
        Args:
            error: The error raised by the source stream
            
        Returns:
            True if the download should restart with the enlarged exclusion
            set, False if the error is terminal
            
        Raises:
            RetriesExhaustedError: If the error is recoverable but the
                                   restart budget is used up
        """
        if not isinstance(error, NetworkTransferError):
            return False
        
        peer_id = error.peer_id
        if not peer_id:
            return False
        
        self._excluded.add(peer_id)
        
        if self._retries >= self._max_retries:
            raise RetriesExhaustedError(
                f"Giving up after {self._retries} retries, "
                f"excluded peers: {', '.join(self._excluded)}",
                excluded=self._excluded.to_list()
            ) from error
        
        self._retries += 1
        logger.info(
            f"Retrying download from other mirrors... "
            f"(retry {self._retries}/{self._max_retries}, excluding {peer_id})"
        )
        return True
