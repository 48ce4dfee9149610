"""System announcements appended to the transcript at convergence, voting and results."""

from datetime import datetime, timezone

from yui_council.models import Message

SYSTEM_ID = "system"

_CONVERGENCE_TITLES = {
    "en": {
        "natural_consensus": "🎯 Natural Consensus - Dialogue Converged",
        "high_satisfaction": "✨ High Satisfaction - Dialogue Complete",
        "max_rounds": "⏰ Maximum Rounds Reached - Dialogue Ended",
        "facilitator_decision": "🎭 Facilitator Decision - Dialogue Converged",
    },
    "ja": {
        "natural_consensus": "🎯 自然な合意形成による対話収束",
        "high_satisfaction": "✨ 高い満足度による対話完了",
        "max_rounds": "⏰ 最大ラウンド数到達による対話終了",
        "facilitator_decision": "🎭 ファシリテーター判断による対話収束",
    },
}

_CONVERGENCE_EXPLANATIONS = {
    "en": {
        "natural_consensus": (
            "Overall consensus reached {overall:.1f}/10 and {ready}/{total} agents are ready "
            "to move on."
        ),
        "high_satisfaction": (
            "Round {round} reached high satisfaction ({overall:.1f}/10); the discussion is "
            "considered deep enough."
        ),
        "max_rounds": (
            "Round {round} hit the configured round limit with consensus at {overall:.1f}/10."
        ),
        "facilitator_decision": (
            "In round {round} the facilitator judged that integration serves the question "
            "better than further discussion. Consensus: {overall:.1f}/10."
        ),
    },
    "ja": {
        "natural_consensus": (
            "全体合意度が {overall:.1f}/10 に達し、{ready}/{total} のエージェントが次へ進む準備を"
            "整えました。"
        ),
        "high_satisfaction": (
            "Round {round} で高い満足度（{overall:.1f}/10）に達し、議論が十分に深まったと判断しました。"
        ),
        "max_rounds": "Round {round} で最大ラウンド数に達しました。現在の合意度は {overall:.1f}/10 です。",
        "facilitator_decision": (
            "Round {round} でファシリテーターが、議論の継続よりも統合が適切と判断しました。"
            "合意度: {overall:.1f}/10"
        ),
    },
}

_LABELS = {
    "en": {
        "reason": "Convergence reason",
        "results": "Dialogue results",
        "rounds": "Rounds",
        "consensus": "Final consensus",
        "ready": "Agents ready",
        "next": "Proceeding to finalizer selection.",
        "voting_title": "🗳️ Finalizer Selection Voting",
        "voting_body": (
            "Each agent votes for the participant best placed to integrate the discussion, "
            "with the reasons for the choice. Self-votes are not counted."
        ),
        "result_title": "📊 Voting Results",
        "selected": "Selected finalizer(s)",
        "collaborative": "The finalizers will build the conclusion together, each extending the previous output.",
        "no_votes": "No valid votes were cast; a default finalizer was chosen.",
    },
    "ja": {
        "reason": "収束理由",
        "results": "対話の成果",
        "rounds": "ラウンド数",
        "consensus": "最終合意度",
        "ready": "準備完了エージェント",
        "next": "これより最終統合を担当するエージェントの選出に移ります。",
        "voting_title": "🗳️ ファイナライザー選出投票",
        "voting_body": (
            "各エージェントが、議論を最もよく統合できる参加者に理由とともに投票します。"
            "自分自身への投票は数えません。"
        ),
        "result_title": "📊 投票結果",
        "selected": "選出されたファイナライザー",
        "collaborative": "ファイナライザーは順番に、前の出力を発展させながら結論を共同で作成します。",
        "no_votes": "有効な投票がなかったため、既定のファイナライザーを選びました。",
    },
}


def _labels(language: str) -> dict[str, str]:
    return _LABELS.get(language, _LABELS["en"])


def _system_message(content: str, round_number: int) -> Message:
    return Message(
        agent_id=SYSTEM_ID,
        agent_name="System",
        round_number=round_number,
        role="system",
        content=content,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


def convergence_message(
    reason: str,
    round_number: int,
    overall_consensus: float,
    agents_ready: int,
    total_agents: int,
    language: str = "en",
) -> Message:
    lang = language if language in _CONVERGENCE_TITLES else "en"
    labels = _labels(lang)
    title = _CONVERGENCE_TITLES[lang].get(reason, reason)
    explanation = _CONVERGENCE_EXPLANATIONS[lang].get(reason, "").format(
        overall=overall_consensus, ready=agents_ready, total=total_agents, round=round_number
    )
    content = "\n".join([
        f"## {title}",
        "",
        f"**{labels['reason']}**: {explanation}",
        "",
        f"**{labels['results']}**:",
        f"- **{labels['rounds']}**: {round_number + 1}",
        f"- **{labels['consensus']}**: {overall_consensus:.1f}/10",
        f"- **{labels['ready']}**: {agents_ready}/{total_agents}",
        "",
        labels["next"],
    ])
    return _system_message(content, round_number)


def voting_start_message(round_number: int, language: str = "en") -> Message:
    labels = _labels(language)
    return _system_message(f"## {labels['voting_title']}\n\n{labels['voting_body']}", round_number)


def voting_result_message(
    finalizers: list[str],
    counts: dict[str, int],
    round_number: int,
    language: str = "en",
) -> Message:
    labels = _labels(language)
    lines = [f"## {labels['result_title']}", ""]
    if counts:
        lines += [f"- {agent_id}: {count}" for agent_id, count in counts.items()]
    else:
        lines.append(labels["no_votes"])
    lines += ["", f"**{labels['selected']}**: {', '.join(finalizers)}"]
    if len(finalizers) > 1:
        lines += ["", labels["collaborative"]]
    return _system_message("\n".join(lines), round_number)
