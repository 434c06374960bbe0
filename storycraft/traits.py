"""Trait formatting for prompts.

Grouping is presentation-only; traits are never modified.
"""

from __future__ import annotations

from collections import Counter, defaultdict

from storycraft.models import Trait

CATEGORY_LABELS: dict[str, str] = {
    "personality": "性格",
    "value": "価値観",
    "skill": "スキル",
    "experience": "経験",
    "work": "仕事",
    "hobby": "趣味",
    "interest": "興味・関心",
    "lifestyle": "ライフスタイル",
    "other": "その他",
}

DEFAULT_INTENSITY = "やや"

# intensity label as collected in interviews → strength wording used in story prompts
_INTENSITY_WORDING = {
    "とても": "非常に強い",
    "かなり": "強い",
}


def group_by_category(traits: list[Trait]) -> dict[str, list[Trait]]:
    grouped: dict[str, list[Trait]] = defaultdict(list)
    for trait in traits:
        grouped[trait.category].append(trait)
    return dict(grouped)


def format_trait_line(trait: Trait) -> str:
    """One bullet per trait, used by the generic trait listing."""
    line = f"- {trait.label}（カテゴリ: {CATEGORY_LABELS.get(trait.category, trait.category)}）"
    if trait.intensity_label:
        line += f"【{trait.intensity_label}】"
    if trait.description:
        line += f": {trait.description}"
    if trait.keywords:
        line += f" [キーワード: {', '.join(trait.keywords)}]"
    return line


def category_breakdown(traits: list[Trait]) -> str:
    counts = Counter(t.category for t in traits)
    return ", ".join(
        f"{CATEGORY_LABELS.get(cat, cat)}: {count}個" for cat, count in counts.items()
    )


def format_traits_for_story(traits: list[Trait]) -> str:
    """Group traits into the sections the outline prompt maps onto story roles.

    personality+value drive behaviour, skill+experience+work drive problem
    solving, hobby+interest are woven into the plot, lifestyle becomes
    recurring scenes. "other" traits are only listed in the generic section.
    """
    grouped = group_by_category(traits)
    sections: list[str] = []

    character = grouped.get("personality", []) + grouped.get("value", [])
    if character:
        lines = []
        for t in character:
            strength = _INTENSITY_WORDING.get(t.intensity_label or DEFAULT_INTENSITY, "やや")
            lines.append(
                f"- {t.label}（{strength}）: {t.description}\n"
                "  → 物語での表現: この特徴が主人公の行動や判断に自然に表れるようにする"
            )
        sections.append("### 性格・価値観（→ 行動原理に反映）\n" + "\n".join(lines))

    abilities = grouped.get("skill", []) + grouped.get("experience", []) + grouped.get("work", [])
    if abilities:
        sections.append(
            "### スキル・経験（→ 問題解決や活躍シーンに反映）\n"
            + "\n".join(f"- {t.label}: {t.description}" for t in abilities)
        )

    interests = grouped.get("hobby", []) + grouped.get("interest", [])
    if interests:
        sections.append(
            "### 興味・関心（→ 世界観やエピソードに統合）\n"
            + "\n".join(
                f"- {t.label}: プロットに機能する形で組み込む（単なる言及にしない）"
                for t in interests
            )
        )

    lifestyle = grouped.get("lifestyle", [])
    if lifestyle:
        sections.append(
            "### ライフスタイル（→ 象徴的なシーンに反映）\n"
            + "\n".join(f"- {t.label}: {t.description}" for t in lifestyle)
        )

    other = grouped.get("other", [])
    if other:
        sections.append(
            "### その他の特徴（→ 必要に応じて味付けに使う）\n"
            + "\n".join(format_trait_line(t) for t in other)
        )

    return "\n\n".join(sections)
