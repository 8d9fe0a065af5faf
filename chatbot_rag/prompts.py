"""
Prompt templates for handing retrieved context to the language model.

Only string assembly lives here; running the model is the host
application's job.
"""

_TEMPLATES = {
    "en": (
        "Based on the following information, answer the user's question in English.\n"
        "\n"
        "Context:\n"
        "{context}\n"
        "\n"
        "Question: {query}\n"
        "\n"
        "Answer:"
    ),
    "ru": (
        "На основе следующей информации ответьте на вопрос пользователя на русском языке.\n"
        "\n"
        "Контекст:\n"
        "{context}\n"
        "\n"
        "Вопрос: {query}\n"
        "\n"
        "Ответ:"
    ),
}

_NO_CONTEXT = {
    "en": "Question: {query}\n\nAnswer:",
    "ru": "Вопрос: {query}\n\nОтвет:",
}


def build_prompt(query: str, context: str, language: str = "en") -> str:
    """
    Format `query` with retrieved `context` for the given language.

    With empty context the model gets the bare question.
    """
    if language not in _TEMPLATES:
        raise ValueError(f"Unsupported prompt language: {language}")

    if not context.strip():
        return _NO_CONTEXT[language].format(query=query)
    return _TEMPLATES[language].format(context=context, query=query)
