"""Position sizing — pure math, no I/O.

Flat stakes or a Masaniello progression sized from bankroll, remaining
target wins and estimated win probability.
"""

from typing import Optional

from signalforge.models.auto_trade_config import MasanielloConfig


def masaniello_is_active(m: MasanielloConfig) -> bool:
    """True when the progression is enabled and its inputs are usable."""
    return (
        m.enabled
        and m.bankroll > 0
        and m.target_wins > 0
        and 0 < m.win_probability < 1
    )


def calculate_masaniello_stake(m: MasanielloConfig) -> Optional[float]:
    """Calculate the next Masaniello stake.

    Formula::

        step   = clamp(current_step, 1, target_wins)
        factor = (target_wins - (step - 1)) / target_wins
        stake  = max(min_stake or 1,
                     min(bankroll × max_stake_percent,
                         bankroll × factor × win_probability))

    Returns ``None`` when the progression is disabled or its inputs are
    unusable, in which case the caller stakes the flat amount.
    """
    if not masaniello_is_active(m):
        return None

    step = max(1, min(m.target_wins, m.current_step or 1))
    factor = (m.target_wins - (step - 1)) / m.target_wins
    cap = m.bankroll * (m.max_stake_percent or 0.02)
    progressive = m.bankroll * factor * m.win_probability
    return max(m.min_stake or 1.0, min(cap, progressive))


def resolve_stake(amount: float, m: MasanielloConfig) -> float:
    """Masaniello stake when active, else the flat *amount*."""
    stake = calculate_masaniello_stake(m)
    return amount if stake is None else stake


def advance_step(m: MasanielloConfig) -> int:
    """Step after a successful execution, capped at ``target_wins``."""
    return min((m.current_step or 1) + 1, m.target_wins)
