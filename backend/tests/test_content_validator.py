"""
Test: Content Validation
========================

Marker phrase + channel rules, local-first lookup, Neynar fallback.
"""

import asyncio

import pytest

from models.domain.content_entry import ContentEntry, ContentState
from services.content_validator import DESCRIPTION_MAX_LENGTH

from conftest import CASTER_FID, HASH_A, HASH_B, HASH_C, MARKER_TEXT, make_cast


def stored(content_hash, state, description="stored description"):
    return ContentEntry(
        content_hash=content_hash,
        owner_identity=CASTER_FID,
        owner_username='caster',
        description=description,
        state=state,
    )


class TestCheckCast:

    def test_marker_in_channel(self, validator):
        result = validator.check_cast(HASH_A, make_cast(CASTER_FID))
        assert result.valid
        assert result.owner_identity == CASTER_FID
        assert result.description == "shipped the app"
        assert result.content_timestamp.year == 2024

    def test_marker_is_case_insensitive_and_spans_lines(self, validator):
        cast = make_cast(CASTER_FID, text="Started Aiming\nHigher and it WORKED OUT! new job")
        result = validator.check_cast(HASH_A, cast)
        assert result.valid
        assert result.description == "new job"

    def test_missing_marker(self, validator):
        result = validator.check_cast(HASH_A, make_cast(CASTER_FID, text="gm"))
        assert not result.valid
        assert result.reason == "missing marker phrase"
        assert result.owner_identity == CASTER_FID

    def test_wrong_channel(self, validator):
        result = validator.check_cast(HASH_A, make_cast(CASTER_FID, channel='base'))
        assert not result.valid
        assert "channel" in result.reason

    def test_parent_url_counts_as_channel(self, validator):
        cast = make_cast(CASTER_FID, channel=None, parent_url='https://warpcast.com/~/channel/higher')
        assert validator.check_cast(HASH_A, cast).valid

    def test_numeric_string_fid_accepted(self, validator):
        cast = make_cast(CASTER_FID)
        cast['author']['fid'] = str(CASTER_FID)
        assert validator.check_cast(HASH_A, cast).owner_identity == CASTER_FID

    def test_long_description_truncated(self, validator):
        cast = make_cast(CASTER_FID, text="started aiming higher and it worked out! " + "x" * 300)
        description = validator.check_cast(HASH_A, cast).description
        assert description == "x" * DESCRIPTION_MAX_LENGTH + "..."


@pytest.mark.asyncio
class TestValidate:

    async def test_found_via_api(self, validator, neynar):
        result = await validator.validate(HASH_A)
        assert result.valid
        assert not result.from_local
        assert neynar.cast_lookups == [HASH_A]

    async def test_settled_local_entry_skips_api(self, validator, repository, neynar):
        repository.seed(stored(HASH_B, ContentState.ACTIVE))
        repository.seed(stored(HASH_C, ContentState.EXPIRED))

        assert (await validator.validate(HASH_B)).from_local
        assert (await validator.validate(HASH_C)).from_local
        assert neynar.cast_lookups == []

    async def test_unsettled_local_entry_rechecked(self, validator, repository, neynar):
        repository.seed(stored(HASH_A, ContentState.VALID))
        result = await validator.validate(HASH_A)
        assert not result.from_local
        assert result.description == "shipped the app"
        assert neynar.cast_lookups == [HASH_A]

    async def test_api_failure_falls_back_to_local(self, validator, repository, neynar):
        repository.seed(stored(HASH_B, ContentState.VALID))
        neynar.fail_casts = True
        result = await validator.validate(HASH_B)
        assert result.from_local
        assert result.description == "stored description"

    async def test_api_failure_without_local_is_none(self, validator, neynar):
        neynar.fail_casts = True
        assert await validator.validate(HASH_B) is None

    async def test_not_found_is_none(self, validator):
        assert await validator.validate(HASH_B) is None

    async def test_invalid_cast_keeps_owner(self, validator, neynar):
        neynar.casts[HASH_B] = make_cast(CASTER_FID, text="just a cast")
        result = await validator.validate(HASH_B)
        assert result is not None
        assert not result.valid
        assert result.owner_identity == CASTER_FID

    @pytest.mark.parametrize('fid', ['not-a-fid', '', '1.5', True])
    async def test_malformed_author_fid_is_none(self, validator, neynar, fid):
        cast = make_cast(CASTER_FID)
        cast['author']['fid'] = fid
        neynar.casts[HASH_B] = cast
        assert await validator.validate(HASH_B) is None

    async def test_stored_invalid_entry_reports_invalid(self, validator, repository, neynar):
        repository.seed(stored(HASH_B, ContentState.INVALID))
        neynar.fail_casts = True
        result = await validator.validate(HASH_B)
        assert not result.valid


@pytest.mark.asyncio
class TestValidateMany:

    async def test_results_keyed_by_hash(self, validator, neynar):
        neynar.casts[HASH_B] = make_cast(CASTER_FID, text="no marker")
        results = await validator.validate_many([HASH_A, HASH_B, HASH_C, HASH_A])

        assert list(results) == [HASH_A, HASH_B, HASH_C]
        assert results[HASH_A].valid
        assert not results[HASH_B].valid
        assert results[HASH_C] is None

    async def test_slow_lookup_maps_to_none(self, validator, neynar):
        async def slow(content_hash):
            await asyncio.sleep(5)

        validator.timeout = 0.05
        neynar.lookup_cast = slow
        results = await validator.validate_many([HASH_A])
        assert results == {HASH_A: None}

    async def test_unexpected_error_isolated_per_item(self, validator, neynar):
        original = neynar.lookup_cast

        async def flaky(content_hash):
            if content_hash == HASH_B:
                raise KeyError('author')
            return await original(content_hash)

        neynar.lookup_cast = flaky
        results = await validator.validate_many([HASH_A, HASH_B])
        assert results[HASH_A].valid
        assert results[HASH_B] is None

    async def test_marker_text_constant_is_valid(self, validator):
        assert validator.marker.search(MARKER_TEXT)
