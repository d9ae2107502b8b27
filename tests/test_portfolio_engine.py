"""Tests for gamecore.portfolio_engine: banking, trading and the monthly step."""

from decimal import Decimal
from unittest.mock import patch

import numpy as np
import pytest

from gamecore.error_types import (
    AccountInDebt,
    AlreadyMatured,
    GameEnded,
    GameError,
    InsufficientBalance,
    InsufficientFunds,
    InsufficientHoldings,
    MaxFDReached,
    NotFound,
    NotYetMatured,
    ValidationError,
)
from gamecore.models import (
    CashTransactionType,
    LifeEvent,
    OperationKind,
    SavingsAccount,
    TradeOperation,
)
from gamecore.networth import calculate_networth
from gamecore.portfolio_engine import (
    advance_month,
    apply_operation,
    break_fixed_deposit,
    close_game,
    buy,
    collect_fixed_deposit,
    create_fixed_deposit,
    deposit,
    fd_current_value,
    fd_rate_for,
    mark_quiz_completed,
    new_player_state,
    sell,
    withdraw,
)


def _advance(state, months, income=Decimal("0")):
    for _ in range(months):
        state = advance_month(state, income)
    return state


class TestNewPlayerState:
    def test_starts_at_first_month_with_admin_cash(self, state):
        assert state.current_year == 1
        assert state.current_month == 1
        assert state.pocket_cash == Decimal("100000")
        assert state.pocket_cash_received_total == Decimal("100000")
        assert state.is_started
        assert not state.game_over

    def test_savings_rate_from_config(self, state):
        assert state.savings_account.interest_rate == Decimal("0.025")

    def test_life_events_are_copied(self, settings):
        event = LifeEvent(id="LE-1", message="Bonus", amount=Decimal("1000"), game_year=1, game_month=2)
        s = new_player_state(settings, life_events=[event])
        s.life_events[0].triggered = True
        assert event.triggered is False


class TestSavings:
    def test_deposit_moves_cash(self, state):
        new = deposit(state, 30000)
        assert new.pocket_cash == Decimal("70000")
        assert new.savings_account.balance == Decimal("30000")
        assert new.savings_account.total_deposited == Decimal("30000")

    def test_deposit_does_not_mutate_input(self, state):
        deposit(state, 30000)
        assert state.pocket_cash == Decimal("100000")
        assert state.savings_account.balance == 0

    def test_deposit_more_than_cash(self, state):
        with pytest.raises(InsufficientFunds):
            deposit(state, 100000.01)

    @pytest.mark.parametrize("amount", [0, -5, "abc", float("nan")])
    def test_deposit_rejects_bad_amount(self, state, amount):
        with pytest.raises(ValidationError):
            deposit(state, amount)

    def test_withdraw_moves_cash_back(self, state):
        new = withdraw(deposit(state, 30000), 10000)
        assert new.pocket_cash == Decimal("80000")
        assert new.savings_account.balance == Decimal("20000")

    def test_withdraw_more_than_balance(self, state):
        with pytest.raises(InsufficientBalance):
            withdraw(deposit(state, 100), 101)

    def test_deposit_then_withdraw_round_trip(self, state):
        new = withdraw(deposit(state, 12345.67), 12345.67)
        assert new.pocket_cash == state.pocket_cash
        assert new.savings_account.balance == 0

    def test_float_amounts_keep_paise(self, state):
        new = deposit(state, 0.1)
        new = deposit(new, 0.2)
        assert new.savings_account.balance == Decimal("0.30")


class TestDebt:
    """Scenario: in debt, deposits are blocked but withdrawals still work."""

    def test_deposit_blocked_in_debt(self, state):
        indebted = state.model_copy(update={
            "pocket_cash": Decimal("-500.00"),
            "savings_account": SavingsAccount(balance=Decimal("5000.00")),
        })
        assert indebted.is_in_debt
        with pytest.raises(AccountInDebt):
            deposit(indebted, 1000)

    def test_withdraw_allowed_in_debt(self, state):
        indebted = state.model_copy(update={
            "pocket_cash": Decimal("-500.00"),
            "savings_account": SavingsAccount(balance=Decimal("5000.00")),
        })
        new = withdraw(indebted, 1000)
        assert new.pocket_cash == Decimal("500.00")
        assert not new.is_in_debt

    def test_fd_blocked_in_debt(self, state):
        indebted = state.model_copy(update={"pocket_cash": Decimal("-1.00")})
        with pytest.raises(AccountInDebt):
            create_fixed_deposit(indebted, 1000, 12)


class TestFixedDeposits:
    def test_create_snapshots_rate_and_maturity(self, state):
        new = create_fixed_deposit(state, 50000, 12)
        fd = new.fixed_deposits[0]
        assert fd.id == "FD-1"
        assert fd.interest_rate_annual_pct == Decimal("7.0")
        assert (fd.start_year, fd.start_month) == (1, 1)
        assert (fd.maturity_year, fd.maturity_month) == (2, 1)
        assert new.pocket_cash == Decimal("50000")

    def test_maturity_wraps_year(self, state):
        state = _advance(state, 10)  # (1, 11)
        fd = create_fixed_deposit(state, 1000, 3).fixed_deposits[0]
        assert (fd.maturity_year, fd.maturity_month) == (2, 2)

    def test_rate_change_does_not_touch_existing(self, state):
        new = create_fixed_deposit(state, 1000, 12)
        with patch("gamecore.portfolio_engine._game_cfg", return_value={"fd_rates": {12: 9.0}}):
            assert fd_rate_for(12) == Decimal("9.0")
            newer = create_fixed_deposit(new, 1000, 12)
        assert newer.fixed_deposits[0].interest_rate_annual_pct == Decimal("7.0")
        assert newer.fixed_deposits[1].interest_rate_annual_pct == Decimal("9.0")

    def test_invalid_duration(self, state):
        with pytest.raises(ValidationError):
            create_fixed_deposit(state, 1000, 6)

    def test_cap_of_three(self, state):
        for _ in range(3):
            state = create_fixed_deposit(state, 1000, 3)
        with pytest.raises(MaxFDReached):
            create_fixed_deposit(state, 1000, 3)
        assert len(state.fixed_deposits) == 3

    def test_ids_are_not_reused(self, state):
        state = create_fixed_deposit(state, 1000, 3)
        state = break_fixed_deposit(state, "FD-1")
        state = create_fixed_deposit(state, 1000, 3)
        assert state.fixed_deposits[0].id == "FD-2"

    def test_insufficient_funds(self, state):
        with pytest.raises(InsufficientFunds):
            create_fixed_deposit(state, 100001, 12)

    def test_collect_matured(self, state):
        """Scenario: 50000 for 12 months at 7% collects 53500."""
        state = create_fixed_deposit(state, 50000, 12, rate_pct=7)
        state = _advance(state, 12)
        assert state.fixed_deposits[0].is_matured
        new = collect_fixed_deposit(state, "FD-1")
        assert new.pocket_cash == Decimal("103500.00")
        assert new.fixed_deposits == []

    def test_not_matured_one_month_early(self, state):
        state = create_fixed_deposit(state, 50000, 12)
        state = _advance(state, 11)
        assert not state.fixed_deposits[0].is_matured
        with pytest.raises(NotYetMatured):
            collect_fixed_deposit(state, "FD-1")

    def test_collect_twice_is_not_found(self, state):
        state = _advance(create_fixed_deposit(state, 1000, 3), 3)
        state = collect_fixed_deposit(state, "FD-1")
        cash = state.pocket_cash
        with pytest.raises(NotFound):
            collect_fixed_deposit(state, "FD-1")
        assert state.pocket_cash == cash

    def test_break_early_applies_penalty(self, state):
        """Scenario: breaking 20000 early returns 19800."""
        state = create_fixed_deposit(state, 20000, 12)
        new = break_fixed_deposit(state, "FD-1")
        assert new.pocket_cash == Decimal("80000") + Decimal("19800")
        assert new.fixed_deposits == []

    def test_break_matured_rejected(self, state):
        state = _advance(create_fixed_deposit(state, 1000, 3), 3)
        with pytest.raises(AlreadyMatured):
            break_fixed_deposit(state, "FD-1")

    def test_break_unknown(self, state):
        with pytest.raises(NotFound):
            break_fixed_deposit(state, "FD-99")

    def test_current_value_accrues_linearly(self, state):
        fd = create_fixed_deposit(state, 12000, 12, rate_pct=10).fixed_deposits[0]
        assert fd_current_value(fd, 1, 1) == Decimal("12000.00")
        assert fd_current_value(fd, 1, 7) == Decimal("12600.00")
        assert fd_current_value(fd, 2, 1) == Decimal("13200.00")
        # Clamped after maturity
        assert fd_current_value(fd, 5, 1) == Decimal("13200.00")


class TestTrading:
    def test_first_buy(self, state):
        """Scenario: buy 0.01 BTC at 4,000,000."""
        new = buy(state, "BTC", Decimal("0.01"), 4000000)
        holding = new.holdings["BTC"]
        assert new.pocket_cash == Decimal("60000")
        assert holding.quantity == Decimal("0.01")
        assert holding.avg_price == Decimal("4000000")
        assert holding.total_invested == Decimal("40000")

    def test_second_buy_averages(self, state):
        """Scenario: a second 0.01 BTC at 5,000,000 moves avg to 4,500,000."""
        new = buy(state, "BTC", Decimal("0.01"), 4000000)
        new = buy(new, "BTC", Decimal("0.01"), 5000000)
        holding = new.holdings["BTC"]
        assert holding.quantity == Decimal("0.02")
        assert holding.avg_price == Decimal("4500000")
        assert holding.total_invested == Decimal("90000")
        assert new.pocket_cash == Decimal("10000")

    def test_buy_beyond_cash(self, state):
        with pytest.raises(InsufficientFunds):
            buy(state, "NIFTYBEES", 2001, 50)

    @pytest.mark.parametrize("qty,px", [(0, 10), (-1, 10), (1, 0), (1, -3)])
    def test_buy_rejects_non_positive(self, state, qty, px):
        with pytest.raises(ValidationError):
            buy(state, "NIFTYBEES", qty, px)

    def test_sub_paisa_buy_costs_a_paisa(self, state):
        new = buy(state, "BTC", Decimal("0.005"), 1)
        assert new.pocket_cash == Decimal("99999.99")
        assert new.holdings["BTC"].total_invested == Decimal("0.01")

    def test_sub_paisa_buy_needs_cash(self, state):
        broke = state.model_copy(update={"pocket_cash": Decimal("0.00")})
        with pytest.raises(InsufficientFunds):
            buy(broke, "BTC", Decimal("0.005"), 1)

    def test_tiny_buys_then_sell_never_create_cash(self, state):
        new = state.model_copy(update={"pocket_cash": Decimal("2.00")})
        for _ in range(200):
            new = buy(new, "BTC", Decimal("0.005"), 1)
        assert new.pocket_cash == Decimal("0.00")
        new = sell(new, "BTC", 1, 1)
        assert new.pocket_cash == Decimal("1.00")

    def test_sell_proceeds_round_down(self, state):
        new = buy(state, "BTC", 1, 1)
        new = sell(new, "BTC", Decimal("0.005"), 1)
        assert new.pocket_cash == Decimal("99999.00")

    def test_partial_sell_scales_invested(self, state):
        new = buy(state, "NIFTYBEES", 100, 50)
        new = sell(new, "NIFTYBEES", 25, 80)
        holding = new.holdings["NIFTYBEES"]
        assert holding.quantity == Decimal("75")
        assert holding.avg_price == Decimal("50")
        assert holding.total_invested == Decimal("3750.00")
        assert new.pocket_cash == Decimal("100000") - Decimal("5000") + Decimal("2000")

    def test_full_sell_removes_holding(self, state):
        new = sell(buy(state, "NIFTYBEES", 10, 50), "NIFTYBEES", 10, 55)
        assert "NIFTYBEES" not in new.holdings
        assert new.pocket_cash == Decimal("100050")

    def test_oversell(self, state):
        new = buy(state, "NIFTYBEES", 10, 50)
        with pytest.raises(InsufficientHoldings):
            sell(new, "NIFTYBEES", 11, 50)

    def test_sell_unknown(self, state):
        with pytest.raises(InsufficientHoldings):
            sell(state, "BTC", 1, 50)

    def test_failed_op_leaves_state_untouched(self, state):
        before = state.model_dump_json()
        with pytest.raises(InsufficientFunds):
            buy(state, "BTC", 1, 10**9)
        assert state.model_dump_json() == before


class TestHoldingInvariants:
    def test_random_buy_sell_sequences(self, state):
        rng = np.random.default_rng(7)
        symbols = ["NIFTYBEES", "BTC", "Physical_Gold"]
        for _ in range(300):
            symbol = symbols[int(rng.integers(0, 3))]
            qty = Decimal(int(rng.integers(1, 20)))
            px = Decimal(int(rng.integers(10, 500)))
            try:
                if rng.random() < 0.55:
                    state = buy(state, symbol, qty, px)
                else:
                    state = sell(state, symbol, qty, px)
            except GameError:
                pass
            for holding in state.holdings.values():
                assert holding.quantity > 0
                assert holding.total_invested >= 0
            assert state.pocket_cash >= 0

    def test_fd_cap_never_exceeded(self, state):
        rng = np.random.default_rng(11)
        for _ in range(100):
            try:
                if rng.random() < 0.6:
                    state = create_fixed_deposit(state, 1000, 3)
                elif state.fixed_deposits:
                    state = break_fixed_deposit(state, state.fixed_deposits[0].id)
            except GameError:
                pass
            assert len(state.fixed_deposits) <= 3


class TestApplyOperation:
    def test_dispatches_every_kind(self, state):
        ops = [
            TradeOperation(kind=OperationKind.DEPOSIT, amount=Decimal("1000")),
            TradeOperation(kind=OperationKind.WITHDRAW, amount=Decimal("500")),
            TradeOperation(kind=OperationKind.CREATE_FD, amount=Decimal("2000"), duration_months=3),
            TradeOperation(kind=OperationKind.BUY, symbol="NIFTYBEES", quantity=Decimal("10"), price=Decimal("50")),
            TradeOperation(kind=OperationKind.SELL, symbol="NIFTYBEES", quantity=Decimal("4"), price=Decimal("60")),
            TradeOperation(kind=OperationKind.BREAK_FD, fd_id="FD-1"),
        ]
        for op in ops:
            state = apply_operation(state, op)
        assert state.savings_account.balance == Decimal("500")
        assert state.holdings["NIFTYBEES"].quantity == Decimal("6")
        assert state.fixed_deposits == []
        # 100000 - 1000 + 500 - 2000 - 500 + 240 + 1980
        assert state.pocket_cash == Decimal("99220.00")

    def test_missing_fields_rejected_by_model(self):
        with pytest.raises(ValueError):
            TradeOperation(kind=OperationKind.BUY, symbol="BTC")

    def test_replicas_agree_over_fifty_operations(self, settings):
        """Scenario: the same 50 ops on two fresh replicas give the same net worth."""
        rng = np.random.default_rng(2024)
        ops = []
        for _ in range(50):
            roll = rng.random()
            if roll < 0.3:
                ops.append(TradeOperation(
                    kind=OperationKind.BUY, symbol="NIFTYBEES",
                    quantity=Decimal(str(round(float(rng.uniform(0.1, 40)), 3))),
                    price=Decimal(str(round(float(rng.uniform(20, 90)), 2))),
                ))
            elif roll < 0.5:
                ops.append(TradeOperation(
                    kind=OperationKind.SELL, symbol="NIFTYBEES",
                    quantity=Decimal(str(round(float(rng.uniform(0.1, 20)), 3))),
                    price=Decimal(str(round(float(rng.uniform(20, 90)), 2))),
                ))
            elif roll < 0.7:
                ops.append(TradeOperation(kind=OperationKind.DEPOSIT, amount=Decimal(int(rng.integers(1, 5000)))))
            elif roll < 0.85:
                ops.append(TradeOperation(kind=OperationKind.WITHDRAW, amount=Decimal(int(rng.integers(1, 3000)))))
            else:
                ops.append(TradeOperation(
                    kind=OperationKind.CREATE_FD, amount=Decimal(int(rng.integers(100, 2000))), duration_months=3,
                ))

        host = new_player_state(settings, player_name="p1")
        client = new_player_state(settings, player_name="p1")
        for op in ops:
            wire_op = TradeOperation.model_validate_json(op.model_dump_json())
            host_err = client_err = None
            try:
                host = apply_operation(host, op)
            except GameError as e:
                host_err = type(e)
            try:
                client = apply_operation(client, wire_op)
            except GameError as e:
                client_err = type(e)
            assert host_err == client_err

        prices = {"NIFTYBEES": Decimal("61.25")}.get
        assert calculate_networth(host, prices) == calculate_networth(client, prices)
        assert host.model_dump_json() == client.model_dump_json()


class TestAdvanceMonth:
    def test_clock_moves_and_wraps(self, state):
        state = _advance(state, 12)
        assert (state.current_year, state.current_month) == (2, 1)

    def test_savings_interest_monthly(self, state):
        state = deposit(state, 12000)
        new = advance_month(state)
        # 12000 * 0.025 / 12 = 25
        assert new.savings_account.balance == Decimal("12025.00")

    def test_recurring_income_in_june_and_december(self, state):
        income = Decimal("50000")
        credited = []
        for _ in range(12):
            before = state.pocket_cash
            state = advance_month(state, income)
            if state.pocket_cash != before:
                credited.append(state.current_month)
        assert credited == [6, 12]
        assert state.pocket_cash_received_total == Decimal("200000")
        kinds = [t.kind for t in state.cash_transactions]
        assert kinds == [CashTransactionType.RECURRING_INCOME] * 2

    def test_life_event_applied_once(self, settings):
        loss = LifeEvent(id="LE-1", message="Car repair", amount=Decimal("-20000"), game_year=1, game_month=3)
        state = new_player_state(settings, life_events=[loss])
        state = _advance(state, 2)
        assert state.pocket_cash == Decimal("80000")
        assert state.life_events[0].triggered
        assert state.cash_transactions[-1].kind == CashTransactionType.LIFE_EVENT_LOSS
        state = _advance(state, 12)
        assert state.pocket_cash == Decimal("80000")

    def test_life_event_can_push_into_debt(self, settings):
        loss = LifeEvent(id="LE-1", message="Hospital", amount=Decimal("-150000"), game_year=1, game_month=2)
        state = advance_month(new_player_state(settings, life_events=[loss]))
        assert state.pocket_cash == Decimal("-50000")
        assert state.is_in_debt

    def test_game_over_after_final_month(self, state):
        state = _advance(state, 239)
        assert (state.current_year, state.current_month) == (20, 12)
        assert not state.game_over
        state = advance_month(state)
        assert state.game_over
        assert not state.is_started
        assert (state.current_year, state.current_month) == (20, 12)

    def test_ended_state_is_read_only(self, state):
        ended = state.model_copy(update={"game_over": True})
        with pytest.raises(GameEnded):
            deposit(ended, 10)
        with pytest.raises(GameEnded):
            advance_month(ended)

    def test_close_game_freezes_mid_game(self, state):
        state = _advance(state, 5)
        closed = close_game(state)
        assert closed.game_over
        assert (closed.current_year, closed.current_month) == (1, 6)
        assert closed.pocket_cash == state.pocket_cash
        assert close_game(closed) is closed


class TestQuizCompletion:
    def test_mark_quiz_completed_once(self, state):
        from gamecore.catalog import AssetCategory

        new = mark_quiz_completed(state, AssetCategory.GOLD)
        again = mark_quiz_completed(new, AssetCategory.GOLD)
        assert again.completed_quizzes == [AssetCategory.GOLD]
        assert state.completed_quizzes == []
