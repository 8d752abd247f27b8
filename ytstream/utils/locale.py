from typing import Optional
from urllib.parse import urlparse
from ytstream.config.settings import config


def get_locale(accept_language: Optional[str] = None) -> str:
    """Pick the interface language from an Accept-Language header"""
    if not accept_language:
        return config.locale.default_locale

    languages = []
    for lang in accept_language.split(","):
        parts = lang.strip().split(";")
        locale = parts[0].split("-")[0].lower()
        if locale:
            languages.append(locale)

    for locale in languages:
        if locale in config.locale.supported_locales:
            return locale

    return config.locale.default_locale


def safe_url_for_log(url: str) -> str:
    """Strip the query so signatures and tokens never reach the logs"""
    try:
        parsed = urlparse(url)
        base_url = f"{parsed.scheme}://{parsed.netloc}{parsed.path}"

        if config.logging.level == "DEBUG" and parsed.query:
            return f"{base_url}?..."

        return base_url
    except ValueError:
        return "invalid_url"
