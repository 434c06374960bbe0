"""Handlebars prompt templates and builders for every pipeline stage.

Builders are pure: they take domain models, assemble a template context and
render it. No I/O, no clock reads except through calc_age's default year.
Templates use triple-stash ({{{x}}}) throughout because prompt text must not
be HTML-escaped.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import date
from typing import Any

import pybars

from storycraft.models import (
    GENRES,
    TOTAL_EPISODES,
    QualityCheckResult,
    StoryOutline,
    StoryState,
    Trait,
    UserProfile,
)
from storycraft.traits import category_breakdown, format_traits_for_story

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}

CHILD_AGE_LIMIT = 15


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return "".join(compiled(context))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


# ── Child mode ───────────────────────────────────────────


def calc_age(birth_year: int | None, current_year: int | None = None) -> int | None:
    if not birth_year:
        return None
    return (current_year or date.today().year) - birth_year


def is_child_mode(
    birth_year: int | None,
    age_limit: int = CHILD_AGE_LIMIT,
    current_year: int | None = None,
) -> bool:
    """Child mode applies when the reader is age_limit or younger. Unknown age → adult."""
    age = calc_age(birth_year, current_year)
    return age is not None and age <= age_limit


def length_target(child_mode: bool) -> str:
    return "500〜800" if child_mode else "800〜1,500"


# ── Shared blocks ────────────────────────────────────────

HOUSE_STYLE = """あなたはスマホで読まれる連載Web小説の書き手です。通勤・通学のすき間時間に、最後まで一気に読ませることを何より大切にしています。

## 文体ルール
- 一文は短く。40文字を超えたら分ける
- 一段落は2〜3文まで
- 段落の間には空行を入れ、スマホの画面でも詰まって見えないようにする
- 会話文を多めに（全体の4〜5割が目安）
- 地の文は簡潔に。説明はくどくしない
- 感情は体で感じる言葉で書く（「胸がぎゅっとなった」「思わず笑った」など）
- 凝った比喩や文学的な言い回しは使わない
- 情景描写はテンポを止めない範囲で最小限に
- 主人公の内面は素直に書き、読者が自分のことのように感じられるようにする
- 「──」や「……」は控えめに

## リズム
- 会話 → リアクション → 会話 のテンポを保つ
- 大事な場面ほど文を短くする
- 感情が動く瞬間は一文だけで見せる
- 章の書き出しは状況がすぐわかる短い文にする

## 禁止事項
- 気取った純文学調の文体
- 3行以上続く風景描写
- 説教くさい地の文
- 同じ文末表現を4回以上続けること
- 最終話より前に物語の結末やオチを明かすこと
"""

CHILD_RULES = """## 子ども向けルール（読者は15歳以下です。必ず守ること）
- 小学校高学年〜中学生が読める言葉で書く
- 難しい漢字には括弧でふりがなを付ける（例：挑戦（ちょうせん））
- 暴力・性的表現・強い恐怖をあおる描写は書かない
- 飲酒・喫煙の場面は書かない
- 恋愛は淡い初恋まで
- 主人公は読者と同じくらいの年齢にする
- 学校や友だち関係など、子どもの日常に近い舞台にする
- 前向きなメッセージを自然に込める（説教はしない）
- 1話の文字数は500〜800文字に短くする
"""

FEW_SHOT_EXAMPLES = """## お手本（この書き方で執筆すること）

### 書き出し
金曜日の夜9時。

いつものカウンター席で、ビールをひと口。

ふう、と息が漏れる。長い一週間だった。

### 会話の場面
「お前のいいところ、知ってるか」

いきなり言われて、固まった。

「は？　なに急に」

「最後まで投げ出さないとこ。地味だけど、お前に任せたら絶対に終わるんだよ」

グラスを持つ手が、少しだけ震えた。

### 引きで終わる場面
画面を見つめたまま、動けなかった。

そのとき、通知音が鳴った。

送り主の名前を見て、心臓が跳ねた。
"""


# ── Outline ──────────────────────────────────────────────

OUTLINE_TEMPLATE = """{{{house_style}}}
{{#if child_mode}}
{{{child_rules}}}
{{/if}}

# タスク: 全3話の連載Web小説のアウトラインを作る

## 主人公の名前
{{{protagonist_instruction}}}

## 主人公の特徴データ（{{{trait_breakdown}}}）
{{{traits}}}

## ユーザープロフィール
- 性別: {{{gender}}}
- 年齢: {{{age}}}
- 職業: {{{occupation}}}
{{#if child_mode}}
- 子どものユーザーです。主人公の年齢もこれに合わせること
{{/if}}

## ジャンル: {{{genre_label}}}（{{{genre_description}}}）
{{#if theme}}
## テーマ: {{{theme}}}
{{/if}}

## ドラマ構造（必ず全3話）
- 第1話 introduction（導入）: 日常 → 主人公らしさが見える行動 → 事件の始まり → 【引き】
- 第2話 rising action（展開・危機）: 状況が悪化 → 重要人物との関わり → 最大の壁 → 【引き】
- 第3話 resolution（解決）: 壁を越える → 成長の実感 → 余韻のあるラスト

## 引き（クリフハンガー）のルール
- 第1話と第2話は、読者が「続きが読みたい」と思う終わり方にする（cliffhanger は必須）
- 新しい人物の登場、予想外の展開、秘密の発覚、決断の直前などで引く
- 第3話には cliffhanger を付けない

## 特徴データの使い方
1. 性格・価値観 → 行動原理と判断のしかた
2. スキル・経験 → 問題を解決する場面
3. 興味・関心 → 物語世界やエピソードに組み込む（名前を出すだけにしない）
4. ライフスタイル → 繰り返し出てくる象徴的な場面やモチーフ
5. 弱み・課題 → 成長アークの軸

## 出力形式
次の形のJSONオブジェクトを1つだけ出力すること。JSON以外の文章は一切書かないこと。
episodes はちょうど3つ、number は 1, 2, 3 の順。

{
  "seriesTitle": "シリーズタイトル",
  "protagonistSheet": {
    "name": "{{{protagonist_name_placeholder}}}",
    "personality": "性格の要約（100文字程度）",
    "motivation": "行動の根っこにある動機（50文字程度）",
    "flaw": "欠点・乗り越えるべき課題（50文字程度）",
    "arc": "第1話から第3話での変化（100文字程度）"
  },
  "supportingCharacters": [
    {
      "name": "名前",
      "role": "役割（師匠、恋人候補、ライバルなど）",
      "personality": "性格（50文字程度）",
      "relationship": "主人公との関係（50文字程度）"
    }
  ],
  "episodes": [
    {
      "number": 1,
      "title": "話のタイトル",
      "summary": "200文字程度のあらすじ",
      "dramaticFunction": "introduction",
      "keyScenes": ["主要シーン1", "主要シーン2", "主要シーン3"],
      "plotThreadsIntroduced": ["この話で張る伏線"],
      "plotThreadsResolved": [],
      "emotionalBeat": "この話の感情の山場（30文字程度）",
      "cliffhanger": "どんな引きで終わるか"
    }
  ],
  "themes": ["テーマ1", "テーマ2"],
  "motifs": ["繰り返し出てくるモチーフ1", "モチーフ2"]
}
"""


def build_outline_prompt(
    traits: list[Trait],
    genre: str,
    theme: str | None = None,
    profile: UserProfile | None = None,
    nickname: str | None = None,
    child_age_limit: int = CHILD_AGE_LIMIT,
) -> str:
    profile = profile or UserProfile()
    age = calc_age(profile.birth_year)
    child_mode = is_child_mode(profile.birth_year, child_age_limit)
    genre_info = GENRES.get(genre)
    if genre_info is None:
        raise ValueError(f"Unknown genre: {genre!r}")

    if nickname:
        protagonist_instruction = (
            f"主人公の名前は必ず「{nickname}」にすること（ユーザーの登録名）。"
        )
    else:
        protagonist_instruction = "主人公の名前は、日本語で2〜3文字の自然な名前を考えること。"

    ctx = {
        "house_style": HOUSE_STYLE,
        "child_mode": child_mode,
        "child_rules": CHILD_RULES,
        "protagonist_instruction": protagonist_instruction,
        "protagonist_name_placeholder": nickname or "主人公の名前（日本語2〜3文字）",
        "trait_breakdown": category_breakdown(traits),
        "traits": format_traits_for_story(traits),
        "gender": profile.gender or "不明",
        "age": f"{age}歳" if age is not None else "不明",
        "occupation": profile.occupation or "不明",
        "genre_label": genre_info.label,
        "genre_description": genre_info.description,
        "theme": theme,
    }
    return render_prompt(OUTLINE_TEMPLATE, ctx)


# ── Episode draft ────────────────────────────────────────

EPISODE_TEMPLATE = """{{{house_style}}}
{{#if child_mode}}
{{{child_rules}}}
{{/if}}

{{{few_shot}}}

# タスク: 第{{{number}}}話「{{{plan_title}}}」の本文を書く

## シリーズ
- タイトル: {{{series_title}}}
- テーマ: {{{themes}}}
- モチーフ: {{{motifs}}}

## 主人公
- 名前: {{{protagonist.name}}}
- 性格: {{{protagonist.personality}}}
- 動機: {{{protagonist.motivation}}}
- 欠点: {{{protagonist.flaw}}}
- 成長アーク: {{{protagonist.arc}}}

## 登場人物
{{#each cast}}
- {{{name}}}（{{{role}}}）: {{{personality}}} / {{{relationship}}}
{{/each}}

## 現在のストーリーステート
{{{state_json}}}

{{#if previous_tail}}
## 前話の終わり（ここから自然につなげること）
「{{{previous_tail}}}」
{{/if}}

## この話のアウトライン
- ドラマ上の役割: {{{plan.dramaticFunction}}}
- あらすじ: {{{plan.summary}}}
- 主要シーン: {{{key_scenes}}}
- 感情の山場: {{{plan.emotionalBeat}}}
- 張る伏線: {{{threads_introduced}}}
- 回収する伏線: {{{threads_resolved}}}
{{#if cliffhanger}}
- 引き: {{{cliffhanger}}}
{{/if}}

{{#if upcoming}}
## この後に控える展開（ネタバレ防止のための参考情報）
{{{upcoming}}}
→ これらの展開が残っているので、この話で物語を解決しすぎないこと。まだ回収予定でない伏線を回収しないこと。
{{/if}}

## 執筆ルール
- 文字数: {{{length}}}文字（厳守）
- 1〜2文ごとに必ず空行（\\n\\n）を入れる。長い段落は作らない
- 会話文の前後にも空行を入れる
- 会話を多めにしてテンポよく読ませる
{{#if is_last}}
- この話は最終話。すべての伏線を回収し、成長の実感と余韻のあるラストにすること。文体と改行のルールは第1話・第2話と同じにすること
{{else}}
- この話の最後は、読者が「明日も続きを読みたい」と強く思うクリフハンガーで終えること。中途半端に切るのではなく、盛り上がりの頂点や意外な展開で引くこと
{{/if}}

## 出力形式
次の2つのフィールドだけを持つJSONオブジェクトを出力すること。JSON以外の文章は書かないこと。

{
  "title": "タイトルのみ（「第{{{number}}}話」などの話数は付けない）",
  "body": "本文（{{{length}}}文字。1〜2文ごとに\\n\\nで区切る）"
}
"""


def build_episode_prompt(
    outline: StoryOutline,
    episode_number: int,
    state: StoryState,
    previous_tail: str | None = None,
    child_mode: bool = False,
) -> str:
    plan = outline.episodes[episode_number - 1]
    is_last = episode_number == TOTAL_EPISODES
    upcoming = "\n".join(
        f"- 第{e.number}話: {e.dramatic_function}。{e.emotional_beat}"
        for e in outline.episodes[episode_number:]
    )

    ctx = {
        "house_style": HOUSE_STYLE,
        "child_mode": child_mode,
        "child_rules": CHILD_RULES,
        "few_shot": FEW_SHOT_EXAMPLES,
        "number": str(episode_number),
        "plan_title": plan.title,
        "series_title": outline.series_title,
        "themes": "、".join(outline.themes),
        "motifs": "、".join(outline.motifs),
        "protagonist": outline.protagonist_sheet.model_dump(),
        "cast": [c.model_dump() for c in outline.supporting_characters],
        "state_json": json.dumps(
            state.model_dump(by_alias=True), ensure_ascii=False, indent=2
        ),
        "previous_tail": previous_tail or "",
        "plan": plan.model_dump(by_alias=True),
        "key_scenes": " → ".join(plan.key_scenes),
        "threads_introduced": "、".join(plan.plot_threads_introduced) or "なし",
        "threads_resolved": "、".join(plan.plot_threads_resolved) or "なし",
        "cliffhanger": plan.cliffhanger if not is_last else None,
        "upcoming": upcoming,
        "is_last": is_last,
        "length": length_target(child_mode),
    }
    return render_prompt(EPISODE_TEMPLATE, ctx)


# ── Quality check ────────────────────────────────────────

QUALITY_CHECK_TEMPLATE = """次のWeb小説のエピソードを、5つの項目で評価してください。
各項目を1〜5で採点し、具体的な弱点と改善案を挙げてください。
{{#if child_mode}}
読者は15歳以下です。子ども向けとして読みやすいか、内容がふさわしいかも評価に含めてください。
{{/if}}

## 評価項目
1. readability（読みやすさ）: 段落の短さ、文の短さ、スマホでの読みやすさ
2. pacing（テンポ）: 会話と地の文のバランス、だれない展開
3. characterAppeal（キャラクターの魅力）: 主人公への共感、登場人物の個性
4. emotionalImpact（感情的インパクト）: 心に残る場面
5. hookStrength（引きの強さ）: {{#if is_last}}最終話としての余韻{{else}}続きを読みたくなるか{{/if}}

## 評価対象
{{{body}}}

## 出力形式（JSONのみ）
{
  "scores": {
    "readability": 4,
    "pacing": 3,
    "characterAppeal": 4,
    "emotionalImpact": 4,
    "hookStrength": 3
  },
  "averageScore": 3.6,
  "weaknesses": ["読みやすさ: 2段落目が長い"],
  "suggestions": ["2段落目を3つに分ける"]
}
"""


def build_quality_check_prompt(
    body: str,
    is_last: bool = False,
    child_mode: bool = False,
) -> str:
    return render_prompt(QUALITY_CHECK_TEMPLATE, {
        "body": body,
        "is_last": is_last,
        "child_mode": child_mode,
    })


# ── Refine ───────────────────────────────────────────────

REFINE_TEMPLATE = """{{{house_style}}}
{{#if child_mode}}
{{{child_rules}}}
{{/if}}

# タスク: 品質評価をもとに、次のWeb小説の本文を書き直す

## 品質評価
- 弱点:
{{#each weaknesses}}
  - {{{this}}}
{{/each}}
- 改善案:
{{#each suggestions}}
  - {{{this}}}
{{/each}}

## 書き直しのルール
- 物語の展開と登場人物は変えない
- 指摘された弱点だけを直す
- 文字数は元の本文の±10%以内（約{{{min_chars}}}〜{{{max_chars}}}文字）
- スマホでの読みやすさを最優先する
- 段落は短く、テンポよく

## 元の本文
{{{body}}}

## 出力
書き直した本文だけを出力すること。JSONではなく、プレーンテキストで出力すること。
"""


def build_refine_prompt(
    body: str,
    quality: QualityCheckResult,
    child_mode: bool = False,
) -> str:
    length = len(body)
    return render_prompt(REFINE_TEMPLATE, {
        "house_style": HOUSE_STYLE,
        "child_mode": child_mode,
        "child_rules": CHILD_RULES,
        "weaknesses": quality.weaknesses or ["特になし"],
        "suggestions": quality.suggestions or ["全体の読みやすさを上げる"],
        "min_chars": str(int(length * 0.9)),
        "max_chars": str(int(length * 1.1)),
        "body": body,
    })


# ── State update ─────────────────────────────────────────

STATE_UPDATE_TEMPLATE = """第{{{number}}}話の本文をもとに、ストーリーステートを更新してください。

## 現在のステート
{{{state_json}}}

## 第{{{number}}}話の本文
{{{body}}}

## 更新ルール
- 新しく登場した人物を protagonist.relationships に追加する（キーは人物名）
- trust（信頼度）と affection（好感度）は0〜100。この話での変化は1人につき±{{{max_delta}}}まで
- この話で生まれた伏線を plotThreads.active に追加する（introducedIn は {{{number}}}）
- 回収された伏線は active から取り除き、plotThreads.resolved に移す（resolvedIn は {{{number}}}）
- 主人公の emotionalState、knowledgeGained、personalGrowth を更新する
- worldSettings の time、location、season を更新する
- 変化がない項目も省略せず、ステート全体を出力する

## 出力形式
更新後のステート全体を、現在のステートと同じ形のJSONオブジェクトで出力すること。JSON以外の文章は書かないこと。
"""


def build_state_update_prompt(
    state: StoryState,
    body: str,
    episode_number: int,
    max_delta: int = 20,
) -> str:
    return render_prompt(STATE_UPDATE_TEMPLATE, {
        "number": str(episode_number),
        "state_json": json.dumps(
            state.model_dump(by_alias=True), ensure_ascii=False, indent=2
        ),
        "body": body,
        "max_delta": str(max_delta),
    })
