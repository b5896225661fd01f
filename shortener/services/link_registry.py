"""
Link Registry

This service owns the lifecycle of a short link:
- Creation with a generated or custom code, optional owner and expiry
- Bulk creation with per-item results
- Resolution for redirect, recording the visit atomically
- Expiry updates and soft deletion
- Existence checks and a full listing for diagnostics

Design Decisions:
- Soft delete: deleted_at is set, rows are never removed
- Ownership scoping: with a caller, other users' links look nonexistent
- Visit counting and deletion are single conditional UPDATEs keyed by id,
  so a delete that lands between read and write wins (zero rows -> not found)
- Every operation runs under a timeout; store failures are rolled back and
  re-raised as StoreUnavailable with the operation and code attached
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shortener.core.clock import as_utc, utcnow
from shortener.core.exceptions import (
    ConflictError,
    GoneError,
    NotFoundError,
    ShortenerException,
    StoreUnavailable,
    ValidationError,
)
from shortener.core.setting import ExpiryUpdateMode, Settings, settings
from shortener.core.validators import (
    MAX_SHORT_CODE_LENGTH,
    MAX_URL_LENGTH,
    is_valid_url,
    sanitize_short_code,
    validate_url_length,
)
from shortener.db.models import ShortLink, User
from shortener.services.allocator import CodeAllocator
from shortener.services.code_generator import CodeGenerator

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Inserts of a generated code that lose a race against a concurrent insert
INSERT_RETRIES = 3


@dataclass
class BulkItem:
    """Outcome of one URL in a bulk request."""
    original_url: str
    short_code: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class BulkResult:
    items: list[BulkItem] = field(default_factory=list)

    @property
    def created(self) -> list[BulkItem]:
        return [item for item in self.items if item.ok]

    @property
    def failed(self) -> list[BulkItem]:
        return [item for item in self.items if not item.ok]


class LinkRegistry:
    """
    Core business logic for short links.

    One registry wraps one session; create it per request.
    """

    def __init__(
        self,
        session: AsyncSession,
        allocator: Optional[CodeAllocator] = None,
        clock: Callable[[], datetime] = utcnow,
        strict_urls: bool = True,
        expiry_update_mode: ExpiryUpdateMode = ExpiryUpdateMode.in_place,
        timeout: Optional[float] = None,
        max_bulk_urls: int = 100
    ):
        """
        Args:
            session: Database session
            allocator: Unique code allocator (default: 6-char base62 codes)
            clock: Source of "now"; injectable for expiry tests
            strict_urls: Require http(s) URLs with a valid host
            expiry_update_mode: in_place or recreate (see update_expiry)
            timeout: Seconds allowed per operation, None for no limit
            max_bulk_urls: Largest accepted bulk request
        """
        self.session = session
        self.allocator = allocator or CodeAllocator()
        self.clock = clock
        self.strict_urls = strict_urls
        self.expiry_update_mode = ExpiryUpdateMode(expiry_update_mode)
        self.timeout = timeout
        self.max_bulk_urls = max_bulk_urls

    @classmethod
    def from_settings(cls, session: AsyncSession, config: Settings = settings) -> "LinkRegistry":
        generator = CodeGenerator(
            length=config.SHORT_CODE_LENGTH,
            alphabet=config.SHORT_CODE_ALPHABET
        )
        return cls(
            session,
            allocator=CodeAllocator(generator, max_attempts=config.SHORT_CODE_MAX_ATTEMPTS),
            strict_urls=config.STRICT_URL_VALIDATION,
            expiry_update_mode=config.EXPIRY_UPDATE_MODE,
            timeout=config.STORE_TIMEOUT_SECONDS,
            max_bulk_urls=config.MAX_BULK_URLS,
        )

    # Creation

    async def create(
        self,
        original_url: Optional[str],
        owner: Optional[User] = None,
        expiry_date: Optional[datetime] = None,
        custom_code: Optional[str] = None
    ) -> ShortLink:
        """
        Create a new short link.

        Args:
            original_url: The long URL to shorten
            owner: Creating user, if the request was authenticated
            expiry_date: Instant after which redirects report expired
            custom_code: Caller-chosen code, used verbatim when free

        Returns:
            The persisted ShortLink (short_code populated)

        Raises:
            ValidationError: If the URL or custom code is missing or malformed
            ConflictError: If a live link already holds custom_code
            CodeSpaceExhaustedError: If no free code could be generated
            StoreUnavailable: If the store fails or times out
        """
        original_url = self._validate_url(original_url)
        if custom_code is not None:
            custom_code = self._validate_custom_code(custom_code)

        return await self._run(
            "create",
            custom_code,
            self._create(original_url, owner, as_utc(expiry_date), custom_code)
        )

    async def bulk_create(self, original_urls: Sequence[str], owner: Optional[User] = None) -> BulkResult:
        """
        Create one link per URL, each in its own transaction.

        A failing item never aborts the batch: its error is recorded on the
        matching BulkItem and the remaining URLs are still processed.

        Raises:
            ValidationError: If the list is empty or larger than max_bulk_urls
        """
        if not original_urls:
            raise ValidationError("At least one URL is required", field="long_urls")
        if len(original_urls) > self.max_bulk_urls:
            raise ValidationError(
                f"A bulk request accepts at most {self.max_bulk_urls} URLs",
                field="long_urls"
            )

        result = BulkResult()
        for url in original_urls:
            try:
                link = await self.create(url, owner=owner)
                result.items.append(BulkItem(original_url=url, short_code=link.short_code))
            except ShortenerException as e:
                logger.warning(f"Bulk item failed for {url!r}: {e}")
                result.items.append(BulkItem(original_url=url, error=str(e)))

        logger.info(
            f"Bulk create finished: {len(result.created)} created, {len(result.failed)} failed"
        )
        return result

    # Resolution and mutation

    async def resolve_for_redirect(self, short_code: str, caller: Optional[User] = None) -> str:
        """
        Resolve a code to its URL and record the visit.

        Raises:
            NotFoundError: Unknown, soft-deleted, or not owned by caller
            GoneError: Link has expired
            StoreUnavailable: If the store fails or times out
        """
        return await self._run("redirect", short_code, self._resolve(short_code, caller))

    async def delete(self, short_code: str, caller: Optional[User] = None) -> str:
        """
        Soft-delete a link. Deleting it again reports NotFoundError.

        Raises:
            NotFoundError: Unknown, already deleted, or not owned by caller
            GoneError: Link has expired
        """
        return await self._run("delete", short_code, self._delete(short_code, caller))

    async def update_expiry(
        self,
        short_code: str,
        new_expiry: Optional[datetime],
        caller: Optional[User] = None
    ) -> ShortLink:
        """
        Change the expiry date of a live link. Expired links can be renewed.

        In in_place mode the row is updated and keeps its id and created_at.
        In recreate mode the row is soft-deleted and a new row with the same
        code, URL, owner and visit history is inserted, so id and created_at
        change.

        Raises:
            ValidationError: If new_expiry is missing
            NotFoundError: Unknown, deleted, or not owned by caller
        """
        if new_expiry is None:
            raise ValidationError("expiry_date is required", field="expiry_date")

        return await self._run(
            "update_expiry",
            short_code,
            self._update_expiry(short_code, as_utc(new_expiry), caller)
        )

    # Lookups

    async def get_link(self, short_code: str, caller: Optional[User] = None) -> ShortLink:
        """Fetch a live link without recording a visit. Expired links are returned."""
        return await self._run("lookup", short_code, self._require_live(short_code, caller))

    async def check_exists(self, original_url: str, owner: Optional[User] = None) -> Optional[str]:
        """
        Return the code of a live, unexpired link to original_url, if any.

        Only links of the same owner count; with no owner, only links
        created without one.
        """
        link = await self.find_existing(original_url, owner)
        return link.short_code if link else None

    async def find_existing(self, original_url: str, owner: Optional[User] = None) -> Optional[ShortLink]:
        """Same lookup as check_exists, returning the link record itself."""
        return await self._run("check_exists", None, self._find_by_url(original_url, owner))

    async def check_custom_code_exists(self, code: str) -> bool:
        """Whether a live link (of any owner) holds code."""
        return await self._run("check_code", code, self._code_taken(code))

    async def list_all(self, limit: Optional[int] = None, offset: int = 0) -> list[ShortLink]:
        """Every link, soft-deleted ones included, in id order."""
        return await self._run("list_all", None, self._list(limit, offset))

    # Internals

    async def _create(
        self,
        original_url: str,
        owner: Optional[User],
        expiry_date: Optional[datetime],
        custom_code: Optional[str]
    ) -> ShortLink:
        owner_id = owner.id if owner else None

        if custom_code is not None:
            if await self._code_taken(custom_code):
                raise ConflictError(custom_code)
            return await self._insert(
                self._new_link(original_url, custom_code, owner_id, expiry_date)
            )

        for attempt in range(1, INSERT_RETRIES + 1):
            code = await self.allocator.allocate(self._code_taken)
            try:
                return await self._insert(
                    self._new_link(original_url, code, owner_id, expiry_date)
                )
            except ConflictError:
                if attempt == INSERT_RETRIES:
                    raise
                logger.warning(f"Generated code {code} was taken concurrently, retrying")

    def _new_link(
        self,
        original_url: str,
        short_code: str,
        owner_id: Optional[int],
        expiry_date: Optional[datetime]
    ) -> ShortLink:
        return ShortLink(
            original_url=original_url,
            short_code=short_code,
            owner_id=owner_id,
            expiry_date=expiry_date,
            visit_count=0,
            created_at=self.clock()
        )

    async def _insert(self, link: ShortLink) -> ShortLink:
        self.session.add(link)
        try:
            await self.session.flush()
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            raise ConflictError(link.short_code) from e

        await self.session.refresh(link)
        logger.info(f"Created short link {link.short_code} (id={link.id}, owner={link.owner_id})")
        return link

    async def _resolve(self, short_code: str, caller: Optional[User]) -> str:
        link = await self._require_active(short_code, caller)

        statement = (
            update(ShortLink)
            .where(ShortLink.id == link.id, ShortLink.deleted_at.is_(None))
            .values(visit_count=ShortLink.visit_count + 1, last_accessed_at=self.clock())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(statement)
        if result.rowcount == 0:
            # deleted between the read and the increment
            raise NotFoundError(short_code)

        await self.session.commit()
        return link.original_url

    async def _delete(self, short_code: str, caller: Optional[User]) -> str:
        link = await self._require_active(short_code, caller)

        if not await self._soft_delete(link):
            raise NotFoundError(short_code)

        await self.session.commit()
        logger.info(f"Soft-deleted short link {short_code} (id={link.id})")
        return short_code

    async def _update_expiry(
        self,
        short_code: str,
        new_expiry: datetime,
        caller: Optional[User]
    ) -> ShortLink:
        link = await self._require_live(short_code, caller)

        if self.expiry_update_mode is ExpiryUpdateMode.recreate:
            if not await self._soft_delete(link):
                raise NotFoundError(short_code)
            replacement = ShortLink(
                original_url=link.original_url,
                short_code=link.short_code,
                owner_id=link.owner_id,
                expiry_date=new_expiry,
                visit_count=link.visit_count,
                last_accessed_at=link.last_accessed_at,
                created_at=self.clock()
            )
            logger.info(f"Re-creating short link {short_code} with new expiry (old id={link.id})")
            return await self._insert(replacement)

        statement = (
            update(ShortLink)
            .where(ShortLink.id == link.id, ShortLink.deleted_at.is_(None))
            .values(expiry_date=new_expiry)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(statement)
        if result.rowcount == 0:
            raise NotFoundError(short_code)

        await self.session.commit()
        logger.info(f"Updated expiry of short link {short_code} (id={link.id})")
        return await self._require_live(short_code, caller)

    async def _soft_delete(self, link: ShortLink) -> bool:
        statement = (
            update(ShortLink)
            .where(ShortLink.id == link.id, ShortLink.deleted_at.is_(None))
            .values(deleted_at=self.clock())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(statement)
        return result.rowcount > 0

    async def _find_live(self, short_code: str, caller: Optional[User]) -> Optional[ShortLink]:
        statement = select(ShortLink).where(
            ShortLink.short_code == short_code,
            ShortLink.deleted_at.is_(None)
        )
        if caller is not None:
            statement = statement.where(ShortLink.owner_id == caller.id)

        # Conditional UPDATEs bypass the identity map, so always reload
        statement = statement.execution_options(populate_existing=True)
        result = await self.session.execute(statement)
        return result.scalars().first()

    async def _require_live(self, short_code: str, caller: Optional[User]) -> ShortLink:
        link = await self._find_live(short_code, caller)
        if link is None:
            raise NotFoundError(short_code)
        return link

    async def _require_active(self, short_code: str, caller: Optional[User]) -> ShortLink:
        link = await self._require_live(short_code, caller)
        if link.is_expired(self.clock()):
            raise GoneError(short_code)
        return link

    async def _find_by_url(self, original_url: str, owner: Optional[User]) -> Optional[ShortLink]:
        statement = select(ShortLink).where(
            ShortLink.original_url == original_url,
            ShortLink.deleted_at.is_(None)
        )
        if owner is not None:
            statement = statement.where(ShortLink.owner_id == owner.id)
        else:
            statement = statement.where(ShortLink.owner_id.is_(None))

        result = await self.session.execute(statement.order_by(ShortLink.id))
        now = self.clock()
        for link in result.scalars().all():
            if not link.is_expired(now):
                return link
        return None

    async def _code_taken(self, code: str) -> bool:
        statement = (
            select(ShortLink.id)
            .where(ShortLink.short_code == code, ShortLink.deleted_at.is_(None))
            .limit(1)
        )
        result = await self.session.execute(statement)
        return result.first() is not None

    async def _list(self, limit: Optional[int], offset: int) -> list[ShortLink]:
        statement = select(ShortLink).order_by(ShortLink.id).offset(offset)
        if limit is not None:
            statement = statement.limit(limit)
        result = await self.session.execute(statement.execution_options(populate_existing=True))
        return list(result.scalars().all())

    async def _run(self, operation: str, short_code: Optional[str], work: Awaitable[T]) -> T:
        """
        Run one store operation under the timeout.

        Domain errors propagate unchanged. Timeouts and driver errors become
        StoreUnavailable. The session is rolled back on any failure so no
        half-written change survives.
        """
        try:
            if self.timeout:
                return await asyncio.wait_for(work, timeout=self.timeout)
            return await work
        except ShortenerException:
            await self._rollback(operation)
            raise
        except asyncio.TimeoutError as e:
            await self._rollback(operation)
            logger.error(f"{operation} timed out after {self.timeout}s (code={short_code})")
            raise StoreUnavailable(operation, short_code, original_error=e) from e
        except SQLAlchemyError as e:
            await self._rollback(operation)
            logger.error(f"{operation} failed (code={short_code}): {e}", exc_info=True)
            raise StoreUnavailable(operation, short_code, original_error=e) from e

    async def _rollback(self, operation: str) -> None:
        try:
            await self.session.rollback()
        except SQLAlchemyError as e:
            logger.warning(f"Rollback after failed {operation} also failed: {e}")

    def _validate_url(self, original_url: Optional[str]) -> str:
        if original_url is None or not str(original_url).strip():
            raise ValidationError("Original long URL is required!", field="long_url")

        url = str(original_url).strip()
        if not validate_url_length(url):
            raise ValidationError(
                f"URL is longer than {MAX_URL_LENGTH} characters",
                field="long_url"
            )
        if self.strict_urls and not is_valid_url(url):
            raise ValidationError(
                "Invalid URL format. URL must use http:// or https:// and have a valid domain",
                field="long_url"
            )
        return url

    @staticmethod
    def _validate_custom_code(custom_code: str) -> str:
        if not str(custom_code).strip():
            raise ValidationError("Custom code cannot be empty", field="custom_code")
        if custom_code != custom_code.strip():
            raise ValidationError(
                "Custom code must not have leading or trailing whitespace",
                field="custom_code"
            )

        code = sanitize_short_code(custom_code)
        if code is None:
            raise ValidationError(
                f"Custom code must be 1-{MAX_SHORT_CODE_LENGTH} letters or digits",
                field="custom_code"
            )
        return code
