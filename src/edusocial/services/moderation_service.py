"""
Moderation dispatcher - asynchronous media review for posts

Posts with media stay hidden until the external moderation service sends a
signed verdict to the callback endpoint. Submission failures are retried
with exponential backoff; once attempts run out the job is parked in
`in_review` for a human (fail-closed: never auto-approved, never
auto-rejected).
"""
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, Callable, List

import httpx
from sqlalchemy.orm import Session

from ..db.models.moderation import ModerationJob, ModerationStatus, TERMINAL_MODERATION_STATUSES
from ..db.models.post import Post, PostVisibility
from ..exceptions import ValidationError, Unauthorized, Forbidden, NotFound, InvalidState, InfrastructureError
from .signing import verify_signature

logger = logging.getLogger(__name__)

VERDICTS = (ModerationStatus.APPROVED.value, ModerationStatus.REJECTED.value)


class ModerationClient:
    """HTTP client for the external moderation service"""

    def __init__(self, base_url: Optional[str], api_key: Optional[str] = None, callback_url: str = "", timeout: int = 10):
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key
        self.callback_url = callback_url
        self.timeout = timeout

    def submit(self, job: ModerationJob) -> Dict[str, Any]:
        """
        Hand a job to the moderation service

        The verdict arrives later through the callback. Any transport
        failure, timeout or non-2xx answer is an InfrastructureError.
        """
        if not self.base_url:
            raise InfrastructureError("Moderation service URL not configured")

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            response = httpx.post(
                f"{self.base_url}/jobs",
                headers=headers,
                json={
                    "jobId": job.id,
                    "postId": job.post_id,
                    "mediaUrl": job.media_url,
                    "callbackUrl": self.callback_url,
                },
                timeout=self.timeout,
            )
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise InfrastructureError(f"Moderation service timed out: {e}", {"job_id": job.id}) from e
        except httpx.HTTPStatusError as e:
            raise InfrastructureError(
                f"Moderation service returned {e.response.status_code}",
                {"job_id": job.id, "status_code": e.response.status_code},
            ) from e
        except httpx.HTTPError as e:
            raise InfrastructureError(f"Moderation service request failed: {e}", {"job_id": job.id}) from e

        try:
            return response.json()
        except ValueError:
            return {}


class JobTransport(ABC):
    """Delivers moderation job ids to a worker; the dispatcher does not care how"""

    @abstractmethod
    def submit(self, job_id: str, delay_seconds: int = 0) -> None:
        pass


class SchedulerJobTransport(JobTransport):
    """Runs moderation jobs on the in-process APScheduler"""

    def submit(self, job_id: str, delay_seconds: int = 0) -> None:
        from .scheduled_jobs import schedule_moderation_job
        schedule_moderation_job(job_id, delay_seconds)


def log_rejection_notice(job: ModerationJob, details: Optional[Dict[str, Any]]) -> None:
    """Default submitter notification hook"""
    reason = (details or {}).get("reason", "policy violation")
    logger.info(f"Notify submitter {job.submitter_id}: post {job.post_id} rejected ({reason})")


class ModerationDispatcher:
    """Service that enqueues, retries and resolves moderation jobs"""

    def __init__(
        self,
        db: Session,
        client: ModerationClient,
        transport: JobTransport,
        callback_secret: str,
        max_attempts: int = 5,
        backoff_seconds: int = 30,
        notifier: Optional[Callable[[ModerationJob, Optional[Dict[str, Any]]], None]] = None,
    ):
        self.db = db
        self.client = client
        self.transport = transport
        self.callback_secret = callback_secret
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.notifier = notifier or log_rejection_notice

    def enqueue(self, post_id: str, media_url: str, submitter_id: str) -> str:
        """
        Queue a post's media for review and hide the post until a verdict

        Returns immediately with the job id.

        Raises:
            ValidationError: media_url or submitter_id missing
            NotFound: post does not exist
            Forbidden: submitter is not the post author
        """
        if not media_url:
            raise ValidationError("media_url is required")
        if not submitter_id:
            raise ValidationError("submitter_id is required")

        post = self.db.query(Post).filter(Post.id == post_id).first()
        if not post:
            raise NotFound(f"Post {post_id} not found", {"post_id": post_id})
        if post.author_id != submitter_id:
            logger.warning(f"User {submitter_id} tried to submit post {post_id} owned by {post.author_id}")
            raise Forbidden("Only the author can submit a post for moderation", {"post_id": post_id})

        post.visibility = PostVisibility.HIDDEN.value
        job = ModerationJob(
            post_id=post_id,
            media_url=media_url,
            submitter_id=submitter_id,
            status=ModerationStatus.QUEUED.value,
            attempts=0,
            next_attempt_at=datetime.utcnow(),
        )
        self.db.add(job)
        self.db.commit()
        self.db.refresh(job)

        try:
            self.transport.submit(job.id)
        except Exception as e:
            # The retry sweep picks up queued jobs whose next attempt is due
            logger.warning(f"Could not hand moderation job {job.id} to transport: {e}")

        logger.info(f"Enqueued moderation job {job.id} for post {post_id}")
        return job.id

    def get_job(self, job_id: str) -> ModerationJob:
        job = self.db.query(ModerationJob).filter(ModerationJob.id == job_id).first()
        if not job:
            raise NotFound(f"Moderation job {job_id} not found", {"job_id": job_id})
        return job

    def process(self, job_id: str) -> ModerationJob:
        """
        Submit a queued job to the moderation service

        Claims the job with a conditional update first, so the transport and
        the retry sweep never submit the same attempt twice.
        """
        job = self.get_job(job_id)
        now = datetime.utcnow()
        lease_until = now + timedelta(seconds=max(self.client.timeout * 2, self.backoff_seconds))

        claimed = self.db.query(ModerationJob).filter(
            ModerationJob.id == job_id,
            ModerationJob.status == ModerationStatus.QUEUED.value,
            ModerationJob.next_attempt_at != None,  # noqa: E711
            ModerationJob.next_attempt_at <= now,
        ).update(
            {
                ModerationJob.attempts: ModerationJob.attempts + 1,
                ModerationJob.next_attempt_at: lease_until,
                ModerationJob.updated_at: now,
            },
            synchronize_session=False,
        )
        self.db.commit()
        self.db.refresh(job)

        if claimed == 0:
            logger.debug(f"Moderation job {job_id} not due or already claimed (status={job.status})")
            return job

        try:
            self.client.submit(job)
        except InfrastructureError as e:
            return self._record_failure(job, str(e))

        # Submitted: wait for the callback, the sweep ignores jobs without a next attempt
        self.db.query(ModerationJob).filter(
            ModerationJob.id == job_id,
            ModerationJob.status == ModerationStatus.QUEUED.value,
        ).update(
            {
                ModerationJob.next_attempt_at: None,
                ModerationJob.last_error: None,
                ModerationJob.updated_at: datetime.utcnow(),
            },
            synchronize_session=False,
        )
        self.db.commit()
        self.db.refresh(job)
        logger.info(f"Submitted moderation job {job_id} (attempt {job.attempts})")
        return job

    def _record_failure(self, job: ModerationJob, error: str) -> ModerationJob:
        now = datetime.utcnow()

        if job.attempts >= self.max_attempts:
            self.db.query(ModerationJob).filter(
                ModerationJob.id == job.id,
                ModerationJob.status == ModerationStatus.QUEUED.value,
            ).update(
                {
                    ModerationJob.status: ModerationStatus.IN_REVIEW.value,
                    ModerationJob.next_attempt_at: None,
                    ModerationJob.last_error: error[:1000],
                    ModerationJob.updated_at: now,
                },
                synchronize_session=False,
            )
            self.db.commit()
            self.db.refresh(job)
            logger.error(
                f"Moderation job {job.id} failed {job.attempts} times, moved to manual review: {error}"
            )
            return job

        delay = self.backoff_seconds * (2 ** (job.attempts - 1))
        self.db.query(ModerationJob).filter(
            ModerationJob.id == job.id,
            ModerationJob.status == ModerationStatus.QUEUED.value,
        ).update(
            {
                ModerationJob.next_attempt_at: now + timedelta(seconds=delay),
                ModerationJob.last_error: error[:1000],
                ModerationJob.updated_at: now,
            },
            synchronize_session=False,
        )
        self.db.commit()
        self.db.refresh(job)
        logger.warning(
            f"Moderation job {job.id} attempt {job.attempts}/{self.max_attempts} failed: {error}. Retrying in {delay}s"
        )

        try:
            self.transport.submit(job.id, delay_seconds=delay)
        except Exception as e:
            logger.warning(f"Could not reschedule moderation job {job.id}: {e}")
        return job

    def handle_callback(self, raw_body: bytes, signature: Optional[str]) -> ModerationJob:
        """
        Authenticate and apply a moderation service callback

        Raises:
            Unauthorized: signature missing or wrong (nothing is changed)
            ValidationError: body is not a valid verdict payload
        """
        if not verify_signature(self.callback_secret, raw_body, signature):
            logger.warning("Rejected moderation callback with invalid signature")
            raise Unauthorized("Invalid callback signature")

        try:
            payload = json.loads(raw_body)
        except ValueError:
            raise ValidationError("Callback body must be JSON")
        if not isinstance(payload, dict):
            raise ValidationError("Callback body must be a JSON object")

        job_id = payload.get("jobId")
        if not job_id:
            raise ValidationError("jobId is required")

        return self.resolve(job_id, payload.get("verdict"), payload.get("details"))

    def resolve(self, job_id: str, verdict: str, details: Optional[Dict[str, Any]] = None) -> ModerationJob:
        """
        Apply a verdict to a job and update its post's visibility

        Raises:
            ValidationError: verdict is not approved/rejected
            NotFound: job does not exist
            InvalidState: job already has a verdict
        """
        if verdict not in VERDICTS:
            raise ValidationError(f"Invalid verdict: {verdict}", {"allowed": list(VERDICTS)})

        job = self.get_job(job_id)
        now = datetime.utcnow()

        updated = self.db.query(ModerationJob).filter(
            ModerationJob.id == job_id,
            ModerationJob.status.notin_(TERMINAL_MODERATION_STATUSES),
        ).update(
            {
                ModerationJob.status: verdict,
                ModerationJob.result: details or {},
                ModerationJob.resolved_at: now,
                ModerationJob.next_attempt_at: None,
                ModerationJob.updated_at: now,
            },
            synchronize_session=False,
        )
        if updated == 0:
            self.db.refresh(job)
            raise InvalidState(
                f"Moderation job {job_id} already resolved as {job.status}",
                {"job_id": job_id, "status": job.status},
            )

        visibility = PostVisibility.PUBLIC.value if verdict == ModerationStatus.APPROVED.value else PostVisibility.HIDDEN.value
        self.db.query(Post).filter(Post.id == job.post_id).update(
            {Post.visibility: visibility, Post.updated_at: now},
            synchronize_session=False,
        )
        self.db.commit()
        self.db.refresh(job)

        logger.info(f"Moderation job {job_id} resolved: {verdict}")

        if verdict == ModerationStatus.REJECTED.value:
            try:
                self.notifier(job, details)
            except Exception as e:
                logger.warning(f"Submitter notification failed for job {job_id}: {e}")

        return job

    def due_job_ids(self, limit: int = 50) -> List[str]:
        """Queued jobs whose next attempt time has passed"""
        rows = self.db.query(ModerationJob.id).filter(
            ModerationJob.status == ModerationStatus.QUEUED.value,
            ModerationJob.next_attempt_at != None,  # noqa: E711
            ModerationJob.next_attempt_at <= datetime.utcnow(),
        ).order_by(ModerationJob.next_attempt_at).limit(limit).all()
        return [row[0] for row in rows]

    def retry_due_jobs(self, limit: int = 50) -> int:
        """Process every due job; returns how many were looked at"""
        job_ids = self.due_job_ids(limit)
        for job_id in job_ids:
            self.process(job_id)
        return len(job_ids)


def build_moderation_dispatcher(db: Session, transport: Optional[JobTransport] = None) -> ModerationDispatcher:
    """Dispatcher wired from configuration"""
    from ..config import config

    client = ModerationClient(
        base_url=config.MODERATION_SERVICE_URL,
        api_key=config.MODERATION_API_KEY,
        callback_url=config.MODERATION_CALLBACK_URL,
        timeout=config.MODERATION_TIMEOUT_SECONDS,
    )
    return ModerationDispatcher(
        db=db,
        client=client,
        transport=transport or SchedulerJobTransport(),
        callback_secret=config.MODERATION_CALLBACK_SECRET,
        max_attempts=config.MODERATION_MAX_ATTEMPTS,
        backoff_seconds=config.MODERATION_BACKOFF_SECONDS,
    )
