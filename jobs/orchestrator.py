"""
Link Job Orchestrator

Runs one "save this link" job per accepted message, guarded by the
idempotency ledger.

Flow:
    ledger lookup -> (reuse | still processing | claim) -> job body
    -> terminal ledger write -> reply text or notification

Execution modes:
- Synchronous (no notifier): the job runs inside the request and the
  reply carries the result or the failure text.
- Fire-and-forget (notifier configured): the reply is sent right away;
  the job runs under the BackgroundSupervisor and the sender is notified
  once the terminal record is written.

The terminal write happens exactly once per run, whatever the job body
does (success, failure, unexpected exception, cancellation).
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional, Union

from jobs.supervisor import BackgroundSupervisor
from observability.logs import RequestLogAdapter, best_effort, mask_openid
from security.token_vault import TokenVault, TokenVaultConfigError
from services.base import ArticleFetcher, Notifier, Publisher, PublishResult
from storage.bindings import Binding
from storage.ledger import IdempotencyLedger, LedgerDecision

logger = logging.getLogger(__name__)

Log = Union[logging.Logger, RequestLogAdapter]

MAX_ERROR_CODE_LENGTH = 120

# ============================================================================
# USER-FACING TEXTS
# ============================================================================

PROCESSING_TEXT = "Still processing, please wait and try again later."
ACCEPTED_ASYNC_TEXT = "Link received and processing. The result will be sent to you shortly."
FAILURE_TEXT = (
    "Processing failed: the link may be unreachable, the article could not be "
    "extracted, or the GitHub write failed. Please retry later or bind your token again."
)


def already_saved_text(result_url: str) -> str:
    return f"Already saved:\n{result_url}"


def saved_text(result: PublishResult) -> str:
    return f"Saved: {result.title}\n{result.location}"


def error_code_for(error: BaseException) -> str:
    """
    Short machine-readable code for a failed job.

    Typed errors carry their own ``code``; anything else is named after
    its class (``ValueError`` -> ``value_error``).
    """
    code = getattr(error, "code", None)
    if not isinstance(code, str) or not code:
        code = re.sub(r"(?<!^)(?=[A-Z])", "_", type(error).__name__).lower()
    return code[:MAX_ERROR_CODE_LENGTH]


# ============================================================================
# JOB TYPES
# ============================================================================

@dataclass(frozen=True)
class LinkJob:
    job_key: str
    sender: str
    url: str
    title: str
    binding: Binding


@dataclass(frozen=True)
class JobOutcome:
    ok: bool
    result: Optional[PublishResult] = None
    error_code: Optional[str] = None

    @property
    def text(self) -> str:
        return saved_text(self.result) if self.ok and self.result else FAILURE_TEXT


# ============================================================================
# ORCHESTRATOR
# ============================================================================

class LinkOrchestrator:
    def __init__(
        self,
        ledger: IdempotencyLedger,
        vault: Optional[TokenVault],
        fetcher: ArticleFetcher,
        publisher: Publisher,
        notifier: Optional[Notifier] = None,
        supervisor: Optional[BackgroundSupervisor] = None,
    ):
        self.ledger = ledger
        self.vault = vault
        self.fetcher = fetcher
        self.publisher = publisher
        self.notifier = notifier
        self.supervisor = supervisor or BackgroundSupervisor()

    @property
    def fire_and_forget(self) -> bool:
        return self.notifier is not None

    async def submit(self, job: LinkJob, log: Optional[Log] = None) -> str:
        """
        Look the job up in the ledger and run it if nobody owns it.

        Returns:
            Text for the immediate reply
        """
        log = log or logger
        openid = mask_openid(job.sender)

        existing = await self.ledger.get_record(job.job_key)
        decision = self.ledger.decide(existing)

        if decision is LedgerDecision.REUSE_RESULT:
            log.info("idem_hit_success", extra={"openid": openid})
            return already_saved_text(existing.result_url)
        if decision is LedgerDecision.STILL_PROCESSING:
            log.info("idem_hit_processing", extra={"openid": openid})
            return PROCESSING_TEXT

        # Claim must land before the job body starts
        await self.ledger.claim(job.job_key, source_url=job.url)

        if not self.fire_and_forget:
            outcome = await self._run_and_record(job, log)
            return outcome.text

        self.supervisor.spawn(self._run_and_notify(job, log), name=f"link-job:{job.job_key}")
        log.info("reply_sent", extra={"openid": openid, "async": True})
        return ACCEPTED_ASYNC_TEXT

    async def _execute(self, job: LinkJob, log: Log) -> PublishResult:
        """Job body: credential -> fetch/convert -> publish."""
        if self.vault is None:
            raise TokenVaultConfigError("token encryption key not configured")

        openid = mask_openid(job.sender)
        log.info("pipeline_start", extra={"openid": openid})
        credential = self.vault.decrypt(job.binding.github_token_enc)

        log.info("fetch_start", extra={"openid": openid})
        article = await self.fetcher.fetch(job.url, job.title)
        log.info("fetch_done", extra={"openid": openid, "md_chars": len(article.markdown)})

        log.info("github_write_start", extra={"openid": openid})
        result = await self.publisher.publish(
            credential,
            job.binding.default_repo,
            job.binding.default_path,
            article.resolved_title,
            job.url,
            article.markdown,
        )
        log.info("github_write_done", extra={"openid": openid, "url": result.location})
        return result

    async def _run_and_record(self, job: LinkJob, log: Log) -> JobOutcome:
        outcome: Optional[JobOutcome] = None
        try:
            result = await self._execute(job, log)
            outcome = JobOutcome(ok=True, result=result)
        except Exception as e:
            outcome = JobOutcome(ok=False, error_code=error_code_for(e))
            log.warning(
                f"link_processing_failed: {e}",
                extra={"openid": mask_openid(job.sender), "error_code": outcome.error_code},
            )
        finally:
            if outcome is None:
                # Cancelled or BaseException: still leave a terminal record
                outcome = JobOutcome(ok=False, error_code="cancelled")
            await self._record(job, outcome)
        return outcome

    async def _record(self, job: LinkJob, outcome: JobOutcome) -> None:
        if outcome.ok:
            await self.ledger.complete(job.job_key, outcome.result.location, outcome.result.path)
        else:
            await self.ledger.fail(job.job_key, outcome.error_code or "unknown")

    async def _run_and_notify(self, job: LinkJob, log: Log) -> JobOutcome:
        outcome = await self._run_and_record(job, log)
        await best_effort(
            lambda: self.notifier.send_text(job.sender, outcome.text),
            "wechat_notify",
            log,
        )
        return outcome
