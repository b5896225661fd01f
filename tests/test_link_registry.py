"""Tests for the link registry against a real SQLite store."""

import asyncio
import random
from datetime import timedelta

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from shortener.core.clock import as_utc
from shortener.core.exceptions import (
    CodeSpaceExhaustedError,
    ConflictError,
    GoneError,
    NotFoundError,
    StoreUnavailable,
    ValidationError,
)
from shortener.core.setting import DEFAULT_ALPHABET, ExpiryUpdateMode
from shortener.db.models import ShortLink
from shortener.services.allocator import CodeAllocator
from shortener.services.code_generator import CodeGenerator
from shortener.services.link_registry import INSERT_RETRIES, LinkRegistry


class StaleAllocator:
    """Hands out the given codes in order without consulting the store."""

    def __init__(self, *codes: str):
        self._codes = iter(codes)
        self.calls = 0

    async def allocate(self, is_taken) -> str:
        self.calls += 1
        return next(self._codes)


class TestCreate:

    @pytest.mark.asyncio
    async def test_generated_code(self, registry, clock):
        link = await registry.create("https://example.com")

        assert len(link.short_code) == 6
        assert set(link.short_code) <= set(DEFAULT_ALPHABET)
        assert link.visit_count == 0
        assert link.id is not None
        assert as_utc(link.created_at) == clock.now
        assert link.deleted_at is None

    @pytest.mark.asyncio
    async def test_custom_code_used_verbatim(self, registry):
        link = await registry.create("https://example.com", custom_code="abc123")
        assert link.short_code == "abc123"

    @pytest.mark.asyncio
    async def test_duplicate_custom_code_conflicts(self, registry):
        await registry.create("https://example.com", custom_code="abc123")
        with pytest.raises(ConflictError):
            await registry.create("https://example.com", custom_code="abc123")

    @pytest.mark.asyncio
    async def test_custom_code_free_again_after_delete(self, registry):
        first = await registry.create("https://a.com", custom_code="reuse1")
        await registry.delete("reuse1")

        second = await registry.create("https://b.com", custom_code="reuse1")
        assert second.id != first.id
        assert await registry.resolve_for_redirect("reuse1") == "https://b.com"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("url", [None, "", "   "])
    async def test_missing_url(self, registry, url):
        with pytest.raises(ValidationError):
            await registry.create(url)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code", ["", "   "])
    async def test_empty_custom_code(self, registry, code):
        with pytest.raises(ValidationError):
            await registry.create("https://example.com", custom_code=code)

    @pytest.mark.asyncio
    async def test_malformed_custom_code(self, registry):
        with pytest.raises(ValidationError):
            await registry.create("https://example.com", custom_code="no/slashes")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code", [" abc123", "abc123 ", "\tabc123"])
    async def test_custom_code_is_not_trimmed(self, registry, code):
        with pytest.raises(ValidationError):
            await registry.create("https://example.com", custom_code=code)

        assert await registry.check_custom_code_exists("abc123") is False

    @pytest.mark.asyncio
    async def test_strict_url_validation(self, registry, session):
        with pytest.raises(ValidationError):
            await registry.create("not-a-url")

        lenient = LinkRegistry(session, strict_urls=False)
        link = await lenient.create("not-a-url")
        assert link.original_url == "not-a-url"

    @pytest.mark.asyncio
    async def test_past_expiry_is_accepted(self, registry, clock):
        link = await registry.create("https://example.com", expiry_date=clock.now - timedelta(days=1))
        assert as_utc(link.expiry_date) == clock.now - timedelta(days=1)

    @pytest.mark.asyncio
    async def test_owner_is_recorded(self, registry, alice):
        link = await registry.create("https://example.com", owner=alice)
        assert link.owner_id == alice.id

    @pytest.mark.asyncio
    async def test_generated_codes_avoid_existing_ones(self, registry):
        seeded = CodeGenerator(rng=random.Random(7))
        preview = [seeded.generate() for _ in range(21)]
        taken = preview[:20]

        for index, code in enumerate(taken):
            await registry.create(f"https://example.com/{index}", custom_code=code)

        registry.allocator = CodeAllocator(CodeGenerator(rng=random.Random(7)), max_attempts=25)
        link = await registry.create("https://example.com/fresh")

        assert link.short_code not in taken
        assert link.short_code == preview[20]

    @pytest.mark.asyncio
    async def test_allocation_exhaustion(self, registry):
        await registry.create("https://example.com", custom_code="aaaaaa")
        registry.allocator = CodeAllocator(CodeGenerator(alphabet="a"), max_attempts=3)

        with pytest.raises(CodeSpaceExhaustedError):
            await registry.create("https://example.com/other")

    @pytest.mark.asyncio
    async def test_insert_collision_reallocates(self, registry):
        await registry.create("https://example.com/first", custom_code="AAAAAA")
        allocator = StaleAllocator("AAAAAA", "BBBBBB")
        registry.allocator = allocator

        link = await registry.create("https://example.com/second")

        assert link.short_code == "BBBBBB"
        assert allocator.calls == 2
        assert await registry.resolve_for_redirect("AAAAAA") == "https://example.com/first"

    @pytest.mark.asyncio
    async def test_insert_collisions_give_up_after_retries(self, registry):
        await registry.create("https://example.com/first", custom_code="AAAAAA")
        allocator = StaleAllocator(*["AAAAAA"] * INSERT_RETRIES)
        registry.allocator = allocator

        with pytest.raises(ConflictError):
            await registry.create("https://example.com/second")

        assert allocator.calls == INSERT_RETRIES
        assert len(await registry.list_all()) == 1


class TestBulkCreate:

    @pytest.mark.asyncio
    async def test_distinct_codes(self, registry, enterprise_user):
        result = await registry.bulk_create(["https://a.com", "https://b.com"], owner=enterprise_user)

        assert [item.original_url for item in result.created] == ["https://a.com", "https://b.com"]
        codes = {item.short_code for item in result.created}
        assert len(codes) == 2
        assert result.failed == []

    @pytest.mark.asyncio
    async def test_item_failures_are_reported(self, registry, enterprise_user):
        result = await registry.bulk_create(
            ["https://a.com", "not-a-url", "", "https://c.com"],
            owner=enterprise_user
        )

        assert [item.original_url for item in result.created] == ["https://a.com", "https://c.com"]
        assert [item.original_url for item in result.failed] == ["not-a-url", ""]
        assert all(item.error for item in result.failed)

    @pytest.mark.asyncio
    async def test_empty_list(self, registry):
        with pytest.raises(ValidationError):
            await registry.bulk_create([])

    @pytest.mark.asyncio
    async def test_too_many_urls(self, session):
        registry = LinkRegistry(session, max_bulk_urls=2)
        with pytest.raises(ValidationError):
            await registry.bulk_create(["https://a.com", "https://b.com", "https://c.com"])


class TestRedirect:

    @pytest.mark.asyncio
    async def test_records_visits(self, registry, clock):
        link = await registry.create("https://example.com")

        clock.advance(minutes=5)
        assert await registry.resolve_for_redirect(link.short_code) == "https://example.com"
        first = await registry.get_link(link.short_code)
        assert first.visit_count == 1
        assert as_utc(first.last_accessed_at) == clock.now

        clock.advance(minutes=5)
        await registry.resolve_for_redirect(link.short_code)
        second = await registry.get_link(link.short_code)
        assert second.visit_count == 2
        assert as_utc(second.last_accessed_at) == clock.now

    @pytest.mark.asyncio
    async def test_concurrent_redirects_keep_every_visit(self, store, clock):
        async with store.session() as db_session:
            link = await LinkRegistry(db_session, clock=clock).create("https://example.com")
            code = link.short_code

        async def visit() -> str:
            async with store.session() as db_session:
                return await LinkRegistry(db_session, clock=clock).resolve_for_redirect(code)

        urls = await asyncio.gather(*(visit() for _ in range(20)))

        assert urls == ["https://example.com"] * 20
        async with store.session() as db_session:
            link = await LinkRegistry(db_session, clock=clock).get_link(code)
        assert link.visit_count == 20

    @pytest.mark.asyncio
    async def test_unknown_code(self, registry):
        with pytest.raises(NotFoundError):
            await registry.resolve_for_redirect("AaBbCc")

    @pytest.mark.asyncio
    async def test_expired_is_gone_not_missing(self, registry, clock):
        link = await registry.create("https://example.com", expiry_date=clock.now + timedelta(days=1))
        code = link.short_code
        assert await registry.resolve_for_redirect(code) == "https://example.com"

        clock.advance(days=2)
        with pytest.raises(GoneError):
            await registry.resolve_for_redirect(code)

        assert (await registry.get_link(code)).visit_count == 1

    @pytest.mark.asyncio
    async def test_deleted_link_is_not_found(self, registry):
        link = await registry.create("https://example.com")
        await registry.delete(link.short_code)

        with pytest.raises(NotFoundError):
            await registry.resolve_for_redirect(link.short_code)

    @pytest.mark.asyncio
    async def test_other_owner_sees_nothing(self, registry, alice, bob):
        code = (await registry.create("https://example.com", owner=alice)).short_code

        with pytest.raises(NotFoundError):
            await registry.resolve_for_redirect(code, caller=bob)

        assert await registry.resolve_for_redirect(code, caller=alice) == "https://example.com"
        assert await registry.resolve_for_redirect(code) == "https://example.com"

    @pytest.mark.asyncio
    async def test_delete_between_read_and_increment_wins(self, session, clock):

        class RacingRegistry(LinkRegistry):
            async def _require_active(self, short_code, caller):
                link = await super()._require_active(short_code, caller)
                await self.session.execute(
                    update(ShortLink)
                    .where(ShortLink.id == link.id)
                    .values(deleted_at=self.clock())
                )
                return link

        code = (await LinkRegistry(session, clock=clock).create("https://example.com")).short_code
        racing = RacingRegistry(session, clock=clock)

        with pytest.raises(NotFoundError):
            await racing.resolve_for_redirect(code)

        # the racing delete was rolled back along with the failed redirect
        fresh = await LinkRegistry(session, clock=clock).get_link(code)
        assert fresh.visit_count == 0


class TestDelete:

    @pytest.mark.asyncio
    async def test_soft_delete(self, registry, clock):
        link = await registry.create("https://example.com")

        assert await registry.delete(link.short_code) == link.short_code

        rows = await registry.list_all()
        assert len(rows) == 1
        assert rows[0].is_deleted
        assert as_utc(rows[0].deleted_at) == clock.now

    @pytest.mark.asyncio
    async def test_second_delete_is_not_found(self, registry):
        link = await registry.create("https://example.com")
        await registry.delete(link.short_code)

        with pytest.raises(NotFoundError):
            await registry.delete(link.short_code)

    @pytest.mark.asyncio
    async def test_expired_link_cannot_be_deleted(self, registry, clock):
        link = await registry.create("https://example.com", expiry_date=clock.now - timedelta(seconds=1))
        with pytest.raises(GoneError):
            await registry.delete(link.short_code)

    @pytest.mark.asyncio
    async def test_other_owner_cannot_delete(self, registry, alice, bob):
        code = (await registry.create("https://example.com", owner=alice)).short_code

        with pytest.raises(NotFoundError):
            await registry.delete(code, caller=bob)
        assert await registry.delete(code, caller=alice) == code


class TestUpdateExpiry:

    @pytest.mark.asyncio
    async def test_in_place_keeps_identity(self, registry, clock):
        link = await registry.create("https://example.com", expiry_date=clock.now + timedelta(hours=1))
        original_id, original_created = link.id, as_utc(link.created_at)

        clock.advance(hours=2)
        new_expiry = clock.now + timedelta(days=30)
        updated = await registry.update_expiry(link.short_code, new_expiry)

        assert updated.id == original_id
        assert as_utc(updated.created_at) == original_created
        assert as_utc(updated.expiry_date) == new_expiry
        assert await registry.resolve_for_redirect(link.short_code) == "https://example.com"
        assert len(await registry.list_all()) == 1

    @pytest.mark.asyncio
    async def test_recreate_issues_new_row(self, session, clock, alice):
        registry = LinkRegistry(session, clock=clock, expiry_update_mode=ExpiryUpdateMode.recreate)
        link = await registry.create("https://example.com", owner=alice, custom_code="keep42")
        await registry.resolve_for_redirect("keep42")

        clock.advance(hours=1)
        new_expiry = clock.now + timedelta(days=7)
        recreated = await registry.update_expiry("keep42", new_expiry, caller=alice)

        assert recreated.id != link.id
        assert recreated.short_code == "keep42"
        assert recreated.original_url == "https://example.com"
        assert recreated.owner_id == alice.id
        assert recreated.visit_count == 1
        assert as_utc(recreated.created_at) == clock.now
        assert as_utc(recreated.expiry_date) == new_expiry

        rows = await registry.list_all()
        assert [row.deleted_at is not None for row in rows] == [True, False]

    @pytest.mark.asyncio
    async def test_unknown_code(self, registry, clock):
        with pytest.raises(NotFoundError):
            await registry.update_expiry("nope42", clock.now)

    @pytest.mark.asyncio
    async def test_other_owner(self, registry, clock, alice, bob):
        link = await registry.create("https://example.com", owner=alice)
        with pytest.raises(NotFoundError):
            await registry.update_expiry(link.short_code, clock.now, caller=bob)

    @pytest.mark.asyncio
    async def test_expiry_required(self, registry):
        link = await registry.create("https://example.com")
        with pytest.raises(ValidationError):
            await registry.update_expiry(link.short_code, None)


class TestLookups:

    @pytest.mark.asyncio
    async def test_check_exists_is_owner_scoped(self, registry, alice, bob):
        link = await registry.create("https://example.com", owner=alice)

        assert await registry.check_exists("https://example.com", owner=alice) == link.short_code
        assert await registry.check_exists("https://example.com", owner=bob) is None
        assert await registry.check_exists("https://example.com") is None

    @pytest.mark.asyncio
    async def test_check_exists_ignores_deleted_and_expired(self, registry, clock):
        deleted = await registry.create("https://example.com")
        await registry.delete(deleted.short_code)
        await registry.create("https://example.com", expiry_date=clock.now - timedelta(days=1))

        assert await registry.check_exists("https://example.com") is None

    @pytest.mark.asyncio
    async def test_find_existing_returns_the_record(self, registry, alice):
        link = await registry.create("https://example.com", owner=alice, custom_code="find42")

        found = await registry.find_existing("https://example.com", owner=alice)
        assert found.id == link.id
        assert found.short_code == "find42"

        await registry.delete("find42")
        assert await registry.find_existing("https://example.com", owner=alice) is None

    @pytest.mark.asyncio
    async def test_check_custom_code_exists(self, registry, alice):
        await registry.create("https://example.com", owner=alice, custom_code="mine42")

        assert await registry.check_custom_code_exists("mine42") is True
        assert await registry.check_custom_code_exists("free42") is False

        await registry.delete("mine42")
        assert await registry.check_custom_code_exists("mine42") is False

    @pytest.mark.asyncio
    async def test_list_all_pagination(self, registry):
        for index in range(5):
            await registry.create(f"https://example.com/{index}")

        everything = await registry.list_all()
        assert [link.original_url for link in everything] == [
            f"https://example.com/{index}" for index in range(5)
        ]

        page = await registry.list_all(limit=2, offset=2)
        assert [link.id for link in page] == [link.id for link in everything[2:4]]

    @pytest.mark.asyncio
    async def test_get_link_returns_expired_links(self, registry, clock):
        link = await registry.create("https://example.com", expiry_date=clock.now - timedelta(days=1))
        fetched = await registry.get_link(link.short_code)
        assert fetched.is_expired(clock.now)


class FailingSession:
    """Session stand-in whose every statement fails like a dropped connection."""

    def __init__(self):
        self.rollbacks = 0

    async def execute(self, *args, **kwargs):
        raise OperationalError("SELECT 1", {}, ConnectionError("connection refused"))

    async def rollback(self):
        self.rollbacks += 1


class HangingSession(FailingSession):

    async def execute(self, *args, **kwargs):
        await asyncio.sleep(5)


class TestStoreFailures:

    @pytest.mark.asyncio
    async def test_driver_errors_are_wrapped(self):
        session = FailingSession()
        registry = LinkRegistry(session)

        with pytest.raises(StoreUnavailable) as exc_info:
            await registry.resolve_for_redirect("abc123")

        assert exc_info.value.operation == "redirect"
        assert exc_info.value.short_code == "abc123"
        assert isinstance(exc_info.value.original_error, OperationalError)
        assert session.rollbacks == 1

    @pytest.mark.asyncio
    async def test_create_failure_is_wrapped(self):
        registry = LinkRegistry(FailingSession())
        with pytest.raises(StoreUnavailable) as exc_info:
            await registry.create("https://example.com", custom_code="abc123")
        assert exc_info.value.operation == "create"

    @pytest.mark.asyncio
    async def test_timeout(self):
        session = HangingSession()
        registry = LinkRegistry(session, timeout=0.05)

        with pytest.raises(StoreUnavailable) as exc_info:
            await registry.check_custom_code_exists("abc123")

        assert exc_info.value.operation == "check_code"
        assert session.rollbacks == 1
