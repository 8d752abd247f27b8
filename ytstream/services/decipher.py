import logging
from typing import Dict, Iterable, Optional, Union
from urllib.parse import parse_qs, parse_qsl, urlencode, urlsplit, urlunsplit

from ytstream.core.errors import ScriptExecutionError
from ytstream.infra import sandbox
from ytstream.models.format import Format
from ytstream.services.cipher import CipherScript

logger = logging.getLogger(__name__)


def set_query_param(url: str, name: str, value: str) -> str:
    """Replace (or add) one query parameter, keeping the others in order"""
    parts = urlsplit(url)
    params = parse_qsl(parts.query, keep_blank_values=True)
    replaced = False
    for i, (key, _) in enumerate(params):
        if key == name:
            params[i] = (name, value)
            replaced = True
    if not replaced:
        params.append((name, value))
    return urlunsplit(parts._replace(query=urlencode(params)))


def get_query_param(url: str, name: str) -> Optional[str]:
    values = parse_qs(urlsplit(url).query).get(name)
    return values[0] if values else None


def decipher_signature(signature_cipher: str, script: CipherScript) -> Optional[str]:
    """
    Resolve a ``signatureCipher`` value (``s=..&sp=..&url=..``) into a URL.
    Returns None when the signature cannot be computed.
    """
    args = parse_qs(signature_cipher)
    url = args.get("url", [None])[0]
    signature = args.get("s", [None])[0]
    if not url:
        return None
    if not signature:
        return url
    if script.decipher is None:
        return None

    try:
        deciphered = sandbox.invoke(script.decipher, signature)
    except ScriptExecutionError as e:
        logger.debug(f"Signature decipher failed: {e}")
        return None

    param = args.get("sp", ["sig"])[0] or "sig"
    return set_query_param(url, param, deciphered)


def transform_n(url: str, script: Optional[CipherScript]) -> str:
    """Apply the n-transform; any failure leaves the URL untouched"""
    n = get_query_param(url, "n")
    if not n or script is None or script.n_transform is None:
        return url
    try:
        transformed = sandbox.invoke(script.n_transform, n)
    except ScriptExecutionError as e:
        logger.debug(f"n transform failed, keeping original value: {e}")
        return url
    return set_query_param(url, "n", transformed)


def decipher_url(raw: str, script: CipherScript) -> Optional[str]:
    """
    Playable URL for either a plain format URL or a ciphered
    ``signatureCipher`` string. None when the format has to be dropped.
    """
    if raw.startswith(("http://", "https://")):
        return transform_n(raw, script)
    url = decipher_signature(raw, script)
    if url is None:
        return None
    return transform_n(url, script)


def set_download_url(fmt: Format, script: CipherScript) -> Format:
    """Resolve the URL in place and drop the cipher fields"""
    raw = fmt.url or fmt.signature_cipher or fmt.cipher
    if raw:
        fmt.url = decipher_url(raw, script)
    fmt.signature_cipher = None
    fmt.cipher = None
    return fmt


def decipher_formats(
    formats: Iterable[Union[Format, dict]],
    script: CipherScript,
) -> Dict[str, Format]:
    """Resolve every format; formats without a playable URL are dropped"""
    deciphered: Dict[str, Format] = {}
    for raw in formats:
        fmt = raw if isinstance(raw, Format) else Format.model_validate(raw)
        set_download_url(fmt, script)
        if fmt.url:
            deciphered[fmt.url] = fmt
        else:
            logger.debug(f"Dropping itag {fmt.itag}: no playable URL")
    return deciphered
