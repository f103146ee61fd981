"""Provider-agnostic prompt rendering for tagging and analysis requests.

Prompts are deterministic: the same inputs always render the same text, so
prompt length (and the chars/4 token estimate derived from it) is stable.

Structure:
- Tagging and main-entity prompts are a single user turn asking for one
  comma-separated line
- Analysis prompts append fixed formatting instructions to the caller's prompt
"""

from linkranger.services.llm.types import Turn

# Only the first 8000 characters of page content are sent to the model
MAX_CONTENT_CHARS = 8000

TAGGING_PROMPT_TEMPLATE = """あなたはプロのコンテンツキュレーターです。以下の情報に基づいて、この記事に最も的確で役立つタグを付けてください。

### 指示
- 日本語で、{max_tags}個以内のタグを生成してください。
- 非常に具体的な技術やトピック（例: React, Next.js, SwiftUI）と、より広範なカテゴリ（例: フロントエンド, モバイル開発, UIデザイン）をバランス良く含めてください。
- 最も重要なキーワードは必ずタグに含めてください。
- タグはカンマ区切りの1行で出力してください。例: `React,フロントエンド,状態管理,Recoil,Web開発`

### 入力情報
- **タイトル:** {title}
- **説明文:** {description}
- **抽出された重要キーワード:** {key_terms}
- **記事の冒頭（8000文字）:** {content}

### あなたの仕事
上記の情報を総合的に分析し、この記事の内容を最もよく表すタグを生成してください。"""

MAIN_ENTITIES_PROMPT_TEMPLATE = """以下の記事の主題となっている固有名詞（製品名、サービス名、企業名、人物名、技術名など）を抽出してください。

### 指示
- 記事の中心となっている固有名詞だけを、重要な順に最大5個まで挙げてください。
- 一般名詞やカテゴリ名は含めないでください。
- カンマ区切りの1行で出力してください。説明や前置きは不要です。

### 入力情報
- **タイトル:** {title}
- **説明文:** {description}
- **本文:** {content}"""

ANALYSIS_INSTRUCTIONS = """【追加指示】
- 統合的で簡潔な分析を心がけてください
- 冗長な説明は避け、最も重要な情報のみを含めてください
- 参考リンクは必ず最後に含めてください
- マークダウン形式で見やすく整理してください
- テーマに説明文が含まれている場合は、その説明文の内容も考慮して解説してください
- 例：「AI開発ツール Kiro（Kiroの機能・使い方・料金）」の場合、機能・使い方・料金の観点から解説してください"""


def build_tagging_prompt(
    title: str,
    description: str,
    content: str,
    key_terms: list[str],
    max_tags: int,
) -> str:
    return TAGGING_PROMPT_TEMPLATE.format(
        max_tags=max_tags,
        title=title,
        description=description,
        key_terms=", ".join(key_terms),
        content=content[:MAX_CONTENT_CHARS],
    )


def build_main_entities_prompt(title: str, description: str, content: str) -> str:
    return MAIN_ENTITIES_PROMPT_TEMPLATE.format(
        title=title,
        description=description,
        content=content[:MAX_CONTENT_CHARS],
    )


def build_analysis_prompt(analysis_prompt: str) -> str:
    return f"{analysis_prompt}\n\n{ANALYSIS_INSTRUCTIONS}"


def single_user_turn(prompt: str) -> list[Turn]:
    """Wrap a rendered prompt as the only turn of a request."""
    return [Turn(role="user", content=prompt)]
