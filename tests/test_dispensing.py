"""
Station authorization tests: locking, dispensing and completion.
"""
import asyncio
from decimal import Decimal

import pytest

from fakes import backdate_credential
from waterpoint.core.exceptions import (
    ConflictError,
    DomainStateError,
    ErrorCode,
    ForbiddenError,
    NotFoundError,
)
from waterpoint.services import DispensingAuthorizer, calculate_pulses


class TestPulses:
    @pytest.mark.parametrize(
        "liters,pulses_per_liter,expected",
        [(10, 1000, 10000), (1, 450, 450), (Decimal("2.5"), 1, 3), (Decimal("0.5"), 3, 2)],
    )
    def test_calculate_pulses(self, liters, pulses_per_liter, expected) -> None:
        assert calculate_pulses(liters, pulses_per_liter) == expected


class TestStationVerify:
    @pytest.mark.asyncio
    async def test_authorizes_dispensing(self, services, paid_reference, notifier) -> None:
        code = notifier.sent[0]["code"]

        result = await services.authorizer.verify(paid_reference, code, "STATION-01")

        assert result["liters"] == 10
        assert result["pulses"] == 10000
        assert result["status"] == "in_progress"
        assert result["station_id"] == "STATION-01"

    @pytest.mark.asyncio
    async def test_same_station_may_verify_again(self, services, paid_reference, notifier):
        code = notifier.sent[0]["code"]
        await services.authorizer.verify(paid_reference, code, "STATION-01")

        result = await services.authorizer.verify(paid_reference, code, "STATION-01")

        assert result["status"] == "in_progress"

    @pytest.mark.asyncio
    async def test_locked_to_other_station(self, services, paid_reference, notifier) -> None:
        code = notifier.sent[0]["code"]
        await services.authorizer.verify(paid_reference, code, "STATION-01")

        with pytest.raises(ForbiddenError) as exc_info:
            await services.authorizer.verify(paid_reference, code, "STATION-02")
        assert exc_info.value.status_code == 403
        assert exc_info.value.details == {"locked_station_id": "STATION-01"}

    @pytest.mark.asyncio
    async def test_in_use_elsewhere_without_lock(
        self, services, test_settings, session_factory, paid_reference, notifier
    ) -> None:
        code = notifier.sent[0]["code"]
        unlocked = DispensingAuthorizer(
            test_settings.model_copy(update={"station_enforce_lock": False}), session_factory
        )
        await unlocked.verify(paid_reference, code, "STATION-01")

        with pytest.raises(ConflictError) as exc_info:
            await unlocked.verify(paid_reference, code, "STATION-02")
        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_wrong_code_counts_attempt(self, services, paid_reference, notifier) -> None:
        bad = "000000" if notifier.sent[0]["code"] != "000000" else "111111"

        with pytest.raises(DomainStateError) as exc_info:
            await services.authorizer.verify(paid_reference, bad, "STATION-01")

        assert exc_info.value.code == ErrorCode.INVALID_CODE
        status = await services.authorizer.status(paid_reference, "STATION-01")
        assert status["attempts"] == 1
        assert status["station_id"] is None

    @pytest.mark.asyncio
    async def test_expired(self, services, paid_reference, notifier, session_factory) -> None:
        await backdate_credential(session_factory, paid_reference)

        with pytest.raises(DomainStateError) as exc_info:
            await services.authorizer.verify(
                paid_reference, notifier.sent[0]["code"], "STATION-01"
            )
        assert exc_info.value.code == ErrorCode.EXPIRED

    @pytest.mark.asyncio
    async def test_unknown_reference(self, services) -> None:
        with pytest.raises(NotFoundError):
            await services.authorizer.verify("WS-0-DEADBEEF", "123456", "STATION-01")

    @pytest.mark.asyncio
    async def test_wrong_codes_block_at_station(self, services, paid_reference, notifier):
        code = notifier.sent[0]["code"]
        bad = "000000" if code != "000000" else "111111"
        errors = []
        for _ in range(3):
            with pytest.raises(DomainStateError) as exc_info:
                await services.authorizer.verify(paid_reference, bad, "STATION-01")
            errors.append(exc_info.value.code)

        assert errors == [ErrorCode.INVALID_CODE, ErrorCode.INVALID_CODE, ErrorCode.BLOCKED]
        with pytest.raises(DomainStateError) as exc_info:
            await services.authorizer.verify(paid_reference, code, "STATION-01")
        assert exc_info.value.code == ErrorCode.BLOCKED
        status = await services.authorizer.status(paid_reference, "STATION-01")
        assert status["status"] == "blocked"
        assert status["can_use"] is False

    @pytest.mark.asyncio
    async def test_old_code_after_reissue(self, services, paid_reference, notifier) -> None:
        old_code = notifier.sent[0]["code"]
        issued = await services.issuer.issue(paid_reference)
        if issued.code == old_code:
            pytest.skip("re-issued code collided with the old one")

        with pytest.raises(DomainStateError) as exc_info:
            await services.authorizer.verify(paid_reference, old_code, "STATION-01")

        assert exc_info.value.code == ErrorCode.EXPIRED
        status = await services.authorizer.status(paid_reference, "STATION-01")
        assert status["attempts"] == 0
        assert status["station_id"] is None

    @pytest.mark.asyncio
    async def test_concurrent_stations_one_wins(self, services, paid_reference, notifier):
        code = notifier.sent[0]["code"]

        results = await asyncio.gather(
            services.authorizer.verify(paid_reference, code, "STATION-01"),
            services.authorizer.verify(paid_reference, code, "STATION-02"),
            return_exceptions=True,
        )

        wins = [r for r in results if isinstance(r, dict)]
        losses = [r for r in results if isinstance(r, Exception)]
        assert len(wins) == 1
        assert len(losses) == 1
        assert isinstance(losses[0], (ForbiddenError, ConflictError))
        assert losses[0].status_code in (403, 409)
        status = await services.authorizer.status(paid_reference, wins[0]["station_id"])
        assert status["status"] == "in_progress"
        assert status["station_id"] == wins[0]["station_id"]

    @pytest.mark.asyncio
    async def test_wrong_code_while_in_progress(self, services, paid_reference, notifier):
        code = notifier.sent[0]["code"]
        bad = "000000" if code != "000000" else "111111"
        await services.authorizer.verify(paid_reference, code, "STATION-01")

        with pytest.raises(DomainStateError) as exc_info:
            await services.authorizer.verify(paid_reference, bad, "STATION-01")

        assert exc_info.value.code == ErrorCode.INVALID_CODE
        assert exc_info.value.details == {"remaining_attempts": 2}
        status = await services.authorizer.status(paid_reference, "STATION-01")
        assert status["status"] == "in_progress"
        assert status["station_id"] == "STATION-01"
        completed = await services.authorizer.complete(paid_reference, "STATION-01")
        assert completed["status"] == "used"


class TestComplete:
    @pytest.mark.asyncio
    async def test_marks_used(self, services, paid_reference, notifier) -> None:
        code = notifier.sent[0]["code"]
        await services.authorizer.verify(paid_reference, code, "STATION-01")

        result = await services.authorizer.complete(paid_reference, "STATION-01")

        assert result["status"] == "used"
        with pytest.raises(DomainStateError) as exc_info:
            await services.authorizer.verify(paid_reference, code, "STATION-01")
        assert exc_info.value.code == ErrorCode.ALREADY_USED

    @pytest.mark.asyncio
    async def test_complete_twice(self, services, paid_reference, notifier) -> None:
        await services.authorizer.verify(paid_reference, notifier.sent[0]["code"], "STATION-01")
        await services.authorizer.complete(paid_reference, "STATION-01")

        with pytest.raises(DomainStateError) as exc_info:
            await services.authorizer.complete(paid_reference, "STATION-01")
        assert exc_info.value.code == ErrorCode.ALREADY_USED

    @pytest.mark.asyncio
    async def test_complete_from_other_station(self, services, paid_reference, notifier):
        await services.authorizer.verify(paid_reference, notifier.sent[0]["code"], "STATION-01")

        with pytest.raises(ConflictError):
            await services.authorizer.complete(paid_reference, "STATION-02")

    @pytest.mark.asyncio
    async def test_nothing_in_progress(self, services, paid_reference) -> None:
        with pytest.raises(NotFoundError):
            await services.authorizer.complete(paid_reference, "STATION-01")


class TestStationStatus:
    @pytest.mark.asyncio
    async def test_fresh_credential(self, services, paid_reference) -> None:
        status = await services.authorizer.status(paid_reference, "STATION-01")

        assert status["status"] == "active"
        assert status["pulses"] == 10000
        assert status["can_use"] is True
        assert status["is_locked_to_different_station"] is False

    @pytest.mark.asyncio
    async def test_locked_elsewhere(self, services, paid_reference, notifier) -> None:
        await services.authorizer.verify(paid_reference, notifier.sent[0]["code"], "STATION-01")

        own = await services.authorizer.status(paid_reference, "STATION-01")
        other = await services.authorizer.status(paid_reference, "STATION-02")

        assert own["can_use"] is True
        assert own["status"] == "in_progress"
        assert other["is_locked_to_different_station"] is True
        assert other["can_use"] is False

    @pytest.mark.asyncio
    async def test_used_cannot_be_used(self, services, paid_reference, notifier) -> None:
        await services.authorizer.verify(paid_reference, notifier.sent[0]["code"], "STATION-01")
        await services.authorizer.complete(paid_reference, "STATION-01")

        status = await services.authorizer.status(paid_reference, "STATION-01")

        assert status["status"] == "used"
        assert status["can_use"] is False

    @pytest.mark.asyncio
    async def test_unknown(self, services) -> None:
        assert await services.authorizer.status("WS-0-DEADBEEF") == {
            "exists": False,
            "status": None,
        }
