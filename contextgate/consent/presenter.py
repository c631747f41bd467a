"""
Consent presenters.

A presenter puts a consent request in front of the user and reports the
decision. It is an external collaborator and may be interactive and slow; the
consent store never holds its lock while a presenter runs.
"""

from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Awaitable, Callable, Iterable, Optional, Union
import inspect

from ..common.utils import get_current_time
from .types import ConsentCondition, ConsentConditionType, ConsentDecision, ConsentRequest


class ConsentPresenter(ABC):
    """Interface for presenting consent requests to a user"""

    @abstractmethod
    async def present(self, request: ConsentRequest) -> ConsentDecision:
        """
        Obtain the user's decision for a consent request.

        Args:
            request: The consent request to present

        Returns:
            ConsentDecision: granted flag plus optional conditions, expiry and revocability
        """
        pass


class DefaultConsentPresenter(ConsentPresenter):
    """
    Reference policy used when no interactive presenter is configured.

    Requests touching sensitive data types are granted for a short period with
    purpose limitation and a retention limit; everything else is granted for
    a longer period with purpose limitation only.
    """

    def __init__(self,
                 sensitive_data_types: Iterable[str] = ("health", "financial", "biometric", "location"),
                 sensitive_expiry: timedelta = timedelta(hours=24),
                 standard_expiry: timedelta = timedelta(days=7),
                 retention_limit: timedelta = timedelta(hours=24)):
        self.sensitive_data_types = {t.lower() for t in sensitive_data_types}
        self.sensitive_expiry = sensitive_expiry
        self.standard_expiry = standard_expiry
        self.retention_limit = retention_limit

    def is_sensitive(self, request: ConsentRequest) -> bool:
        return any(t.lower() in self.sensitive_data_types for t in request.data_types)

    async def present(self, request: ConsentRequest) -> ConsentDecision:
        conditions = [
            ConsentCondition(
                type=ConsentConditionType.PURPOSE_LIMITATION,
                value=request.purpose,
                description=f"Data can only be used for: {request.purpose}"
            )
        ]

        if self.is_sensitive(request):
            lifetime = self.sensitive_expiry
            conditions.append(ConsentCondition(
                type=ConsentConditionType.RETENTION_LIMIT,
                value=int(self.retention_limit.total_seconds() * 1000),
                description=f"Data must be deleted after {self.retention_limit}"
            ))
        else:
            lifetime = self.standard_expiry

        if request.duration is not None and request.duration < lifetime:
            lifetime = request.duration

        return ConsentDecision(
            granted=True,
            conditions=conditions,
            expires_at=get_current_time() + lifetime,
            revocable=True,
            reason="Granted by default consent policy"
        )


PresenterCallback = Callable[[ConsentRequest], Union[ConsentDecision, Awaitable[ConsentDecision]]]


class CallbackConsentPresenter(ConsentPresenter):
    """Adapts a plain or async function into a presenter."""

    def __init__(self, callback: PresenterCallback):
        self.callback = callback

    async def present(self, request: ConsentRequest) -> ConsentDecision:
        result = self.callback(request)
        if inspect.isawaitable(result):
            result = await result
        return result


def as_presenter(presenter: Optional[Union[ConsentPresenter, PresenterCallback]]) -> ConsentPresenter:
    """Normalize a presenter argument; None selects the default policy."""
    if presenter is None:
        return DefaultConsentPresenter()
    if isinstance(presenter, ConsentPresenter):
        return presenter
    if callable(presenter):
        return CallbackConsentPresenter(presenter)
    raise TypeError(f"Not a consent presenter: {presenter!r}")
