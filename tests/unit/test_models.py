"""
Unit tests for the data models.
"""

from dataclasses import dataclass

import pytest

from legacymigrate.models import (
    INDEX_CLAIM,
    LOCATION_CLAIM,
    Claim,
    DidSpace,
    FailureReason,
    GatewayOk,
    GatewaySkipped,
    IndexingResult,
    MigrationStatus,
    ProgressStatus,
    RawKeySpace,
    SingleStepMode,
    Step,
    UploadOutcome,
    UploadRecord,
    VALID_PROGRESS_TRANSITIONS,
    parse_space_identifier,
)

SPACE = "did:key:z6MkSpaceAlpha"


class TestParseSpaceIdentifier:
    """Tests for resolving claim space fields."""

    def test_did_string(self) -> None:
        assert parse_space_identifier(SPACE) == DidSpace(SPACE)

    def test_raw_key_bytes(self) -> None:
        identifier = parse_space_identifier(b"\x00\x01")
        assert identifier == RawKeySpace(b"\x00\x01")
        assert identifier.did == "did:key:z12"

    def test_object_with_did_method(self) -> None:
        class Principal:
            def did(self) -> str:
                return SPACE

        assert parse_space_identifier(Principal()) == DidSpace(SPACE)

    def test_object_with_did_attribute(self) -> None:
        @dataclass
        class Principal:
            did: str

        assert parse_space_identifier(Principal(SPACE)) == DidSpace(SPACE)

    def test_existing_identifier_is_returned(self) -> None:
        identifier = DidSpace(SPACE)
        assert parse_space_identifier(identifier) is identifier

    @pytest.mark.parametrize("value", [None, "", b"", 42, object()])
    def test_unrecognized_values(self, value: object) -> None:
        assert parse_space_identifier(value) is None


class TestRawKeySpace:
    def test_base58_encoding(self) -> None:
        assert RawKeySpace(bytes([0, 0, 57])).did == "did:key:z11z"
        assert RawKeySpace(bytes([58])).did == "did:key:z21"


class TestIndexingResult:
    """Tests for IndexingResult claim helpers."""

    @pytest.fixture
    def result(self) -> IndexingResult:
        return IndexingResult(
            has_index_claim=True,
            has_location_claim=True,
            location_has_space=True,
            index_cid="bafyindex",
            claims=(
                Claim(type=INDEX_CLAIM, content="bafyroot"),
                Claim(type=LOCATION_CLAIM, content="shard-a", space=DidSpace(SPACE)),
                Claim(type=LOCATION_CLAIM, content="shard-b"),
                Claim(type=LOCATION_CLAIM, content="shard-c", space=DidSpace("did:key:zOther")),
            ),
        )

    def test_location_claims(self, result: IndexingResult) -> None:
        assert [c.content for c in result.location_claims] == ["shard-a", "shard-b", "shard-c"]

    def test_spaces_are_distinct(self, result: IndexingResult) -> None:
        assert result.spaces == [SPACE, "did:key:zOther"]

    def test_shards_needing_location_claims(self, result: IndexingResult) -> None:
        shards = ("shard-a", "shard-b", "shard-c", "shard-d")
        assert result.shards_needing_location_claims(shards, SPACE) == [
            "shard-b",
            "shard-c",
            "shard-d",
        ]

    def test_raw_key_space_matches_did(self) -> None:
        key = bytes([0, 0, 57])
        result = IndexingResult(
            claims=(Claim(type=LOCATION_CLAIM, content="shard-a", space=RawKeySpace(key)),)
        )
        assert result.shards_needing_location_claims(("shard-a",), "did:key:z11z") == []


class TestMigrationStatus:
    def _status(self, **needs: bool) -> MigrationStatus:
        values = {
            "needs_index_generation": False,
            "needs_location_claims": False,
            "needs_gateway_auth": False,
        }
        values.update(needs)
        return MigrationStatus(
            has_index_claim=True,
            has_location_claim=True,
            location_has_space=True,
            shards_needing_location_claims=(),
            **values,
        )

    def test_already_migrated(self) -> None:
        assert self._status().already_migrated

    @pytest.mark.parametrize(
        "need",
        ["needs_index_generation", "needs_location_claims", "needs_gateway_auth"],
    )
    def test_any_need_means_not_migrated(self, need: str) -> None:
        assert not self._status(**{need: True}).already_migrated


class TestEnums:
    def test_completed_progress_is_terminal(self) -> None:
        assert ProgressStatus.COMPLETED.is_terminal
        assert VALID_PROGRESS_TRANSITIONS[ProgressStatus.COMPLETED] == set()

    def test_failed_can_be_retried(self) -> None:
        assert ProgressStatus.IN_PROGRESS in VALID_PROGRESS_TRANSITIONS[ProgressStatus.FAILED]

    def test_single_step_mode_maps_to_step(self) -> None:
        assert SingleStepMode("location-claims").step is Step.LOCATION_CLAIMS
        assert SingleStepMode.INDEX.step is Step.INDEX_GENERATION

    def test_terminal_steps(self) -> None:
        assert Step.COMPLETE.is_terminal
        assert Step.FAILED.is_terminal
        assert not Step.VERIFY.is_terminal

    def test_missing_delegation_is_expected(self) -> None:
        assert FailureReason.MISSING_DELEGATION.is_expected
        assert not FailureReason.GATEWAY_AUTH_FAILED.is_expected


class TestUploadRecord:
    def test_with_shards(self) -> None:
        upload = UploadRecord(space=SPACE, root="bafyroot")
        updated = upload.with_shards(["shard-a", "shard-b"])
        assert updated.shards == ("shard-a", "shard-b")
        assert upload.shards == ()


class TestUploadOutcome:
    def test_skipped_is_not_failed(self) -> None:
        outcome = UploadOutcome(success=False, root="r", space=SPACE, skipped=True)
        assert not outcome.failed

    def test_to_dict(self) -> None:
        outcome = UploadOutcome(
            success=False,
            root="r",
            space=SPACE,
            failed_step=Step.GATEWAY_AUTH,
            gateway_result=GatewaySkipped(reason="no-delegation-found"),
            failure_reason=FailureReason.MISSING_DELEGATION,
        )
        data = outcome.to_dict()
        assert data["failed_step"] == "gateway-auth"
        assert data["failure_reason"] == "MISSING_DELEGATION"
        assert data["gateway_result"] == {
            "success": False,
            "skipped": True,
            "reason": "no-delegation-found",
        }

    def test_gateway_ok_to_dict(self) -> None:
        assert GatewayOk("d-1").to_dict()["delegation_id"] == "d-1"
