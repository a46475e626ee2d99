"""Chat message texts. Pure formatting, no I/O."""

from datetime import datetime
from typing import Iterable, List, Optional

from fitbet.features.scoring.engine import ParticipantScore, ScoringEngine
from fitbet.models.challenge import Challenge, format_duration
from fitbet.models.checkin import CheckinWindow
from fitbet.models.participant import Participant


def _when(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d %H:%M UTC") if value else "n/a"


def _names(participants: Iterable[Participant]) -> str:
    return ", ".join(p.display_name for p in participants)


def _bank_holder(challenge: Challenge) -> str:
    return f"@{challenge.bank_holder_username}" if challenge.bank_holder_username else f"ID {challenge.bank_holder_id}"


def challenge_created(challenge: Challenge) -> str:
    return (
        "*New FitBet challenge!*\n\n"
        f"Duration: {format_duration(challenge.duration_value, challenge.duration_unit)}\n"
        f"Stake: {challenge.stake_amount:g}\n"
        f"Discipline threshold: {challenge.discipline_threshold * 100:.0f}%\n"
        f"Allowed skips: {challenge.max_skips}\n\n"
        "Press Join to take part."
    )


def challenge_cancelled(challenge: Challenge) -> str:
    return "The challenge was cancelled by its creator."


def joined(challenge: Challenge, restarted: bool = False) -> str:
    head = "*You rejoined the challenge!*" if restarted else "*You joined the challenge!*"
    return (
        f"{head}\n\n"
        f"Chat: {challenge.chat_title or challenge.chat_id}\n"
        f"Duration: {format_duration(challenge.duration_value, challenge.duration_unit)}\n"
        f"Stake: {challenge.stake_amount:g}\n\n"
        "You have 48 hours to finish onboarding."
    )


def onboarding_completed(challenge: Challenge) -> str:
    return (
        "Onboarding complete. Transfer your stake of "
        f"{challenge.stake_amount:g} and press \"I paid\"."
    )


def onboarding_dropped() -> str:
    return "Onboarding was not finished within 48 hours, so you were removed from the challenge. You can join again."


def onboarding_dropped_group(participant: Participant) -> str:
    return f"{participant.display_name} did not finish onboarding within 48 hours and was removed from the challenge."


def election_started(candidates: List[Participant]) -> str:
    return (
        "*Bank Holder election*\n\n"
        "Vote for the participant who will hold the stakes.\n"
        f"Candidates: {_names(candidates)}\n"
        "Voting closes automatically after 24 hours."
    )


def vote_recorded(candidate: Participant) -> str:
    return f"Your vote for {candidate.display_name} was recorded."


def bank_holder_elected(winner: Participant, max_votes: int) -> str:
    votes = f"{max_votes} vote{'s' if max_votes != 1 else ''}"
    return f"*{winner.display_name}* is the Bank Holder ({votes}). Transfer your stakes to them."


def bank_holder_assigned(holder: Participant) -> str:
    return f"*{holder.display_name}* is the Bank Holder. Transfer your stakes to them."


def election_without_candidates() -> str:
    return "The Bank Holder election ended without eligible candidates. A new vote is needed."


def payment_marked(participant: Participant, challenge: Challenge) -> str:
    return (
        f"{participant.display_name} reports a transfer of {challenge.stake_amount:g}. "
        "Please confirm once you received it."
    )


def payment_confirmed() -> str:
    return "Your payment was confirmed. You are in!"


def challenge_activated(challenge: Challenge, windows: int) -> str:
    return (
        "*The challenge has started!*\n\n"
        f"All stakes are confirmed. Ends: {_when(challenge.ends_at)}\n"
        f"Check-ins scheduled: {windows}"
    )


def window_opened(window: CheckinWindow) -> str:
    return (
        f"*Check-in #{window.window_number} is open!*\n\n"
        "Send your weight, waist and four photos.\n"
        f"Deadline: {_when(window.closes_at)}"
    )


def window_reminder(window: CheckinWindow) -> str:
    return f"Reminder: check-in #{window.window_number} closes at {_when(window.closes_at)}."


def window_reminder_group(window: CheckinWindow, missing: List[Participant]) -> str:
    if not missing:
        return f"Check-in #{window.window_number} closes at {_when(window.closes_at)}. Everyone has submitted!"
    return (
        f"Check-in #{window.window_number} closes at {_when(window.closes_at)}.\n"
        f"Still missing: {_names(missing)}"
    )


def window_closed(window: CheckinWindow, submitted: int, skipped: List[Participant], disqualified: List[Participant]) -> str:
    lines = [f"*Check-in #{window.window_number} closed.*", f"Submitted: {submitted}"]
    if skipped:
        lines.append(f"Skipped: {_names(skipped)}")
    if disqualified:
        lines.append(f"Disqualified for too many skips: {_names(disqualified)}")
    return "\n".join(lines)


def disqualified(max_skips: int) -> str:
    return f"You skipped more than {max_skips} check-ins and were disqualified."


def checkin_received(window: CheckinWindow) -> str:
    return f"Check-in #{window.window_number} received. Thanks!"


def format_results(challenge: Challenge, scores: List[ParticipantScore]) -> str:
    winners = [s for s in scores if s.is_winner]
    losers = [s for s in scores if not s.is_winner]

    lines = ["*CHALLENGE RESULTS*", ""]
    if not winners:
        lines += ["Nobody reached their goal.", "All stakes are returned to participants."]
    elif not losers:
        lines += ["Everyone reached their goal!", "Everyone gets their stake back."]
    else:
        prize = ScoringEngine.prize_per_winner(scores, challenge.stake_amount)
        lines.append("*WINNERS:*")
        lines += [f"- {w.participant.display_name}: {w.total_score:.1f}% (+{prize:.0f})" for w in winners]
        lines += ["", "*DID NOT REACH THE GOAL:*"]
        lines += [f"- {l.participant.display_name}: {l.total_score:.1f}%" for l in losers]

    lines += ["", "*DETAILS:*"]
    for s in scores:
        lines.append(
            f"{s.participant.display_name}: goal {s.goal_achievement:.0f}%, discipline {s.discipline_score:.0f}%"
        )

    if winners and losers:
        lines += ["", f"Bank Holder {_bank_holder(challenge)}, please distribute the winnings."]
    return "\n".join(lines)


def personal_result(challenge: Challenge, score: ParticipantScore) -> str:
    if score.is_winner and score.prize_share > 0:
        outcome = f"You won! Your prize: {score.prize_share * challenge.stake_amount:.0f} on top of your stake."
    elif score.is_winner:
        outcome = "You reached your goal. Your stake is returned."
    else:
        outcome = "You did not reach your goal this time."
    return (
        "*Your results*\n\n"
        f"Goal achievement: {score.goal_achievement:.0f}%\n"
        f"Discipline: {score.discipline_score:.0f}%\n"
        f"Total: {score.total_score:.1f}%\n\n"
        f"{outcome}"
    )
