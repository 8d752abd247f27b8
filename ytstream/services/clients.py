"""
Device profiles impersonated against the player API.

Each profile differs only in its ``context.client`` payload, a few extra
context sections and its User-Agent; the request itself is shared.
"""
import copy
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from ytstream.infra.http import UA_CHROME
from ytstream.utils.parse import generate_nonce

PLAYER_API_URL = "https://youtubei.googleapis.com/youtubei/v1/player"

LOCALE = {"hl": "en", "timeZone": "UTC", "utcOffsetMinutes": 0}
MOBILE_LOCALE = {"hl": "en", "gl": "US", "utcOffsetMinutes": -240}


@dataclass(frozen=True)
class ClientProfile:
    name: str
    client: Dict[str, Any]
    user_agent: str
    # Sections merged into ``context`` next to ``client``
    context_extra: Dict[str, Any] = field(default_factory=dict)
    # Needs playbackContext.signatureTimestamp from the player script
    sends_signature_timestamp: bool = False

    def build_body(self, video_id: str, signature_timestamp: Optional[int] = None) -> Dict[str, Any]:
        context = {"client": copy.deepcopy(self.client), **copy.deepcopy(self.context_extra)}
        body: Dict[str, Any] = {
            "videoId": video_id,
            "cpn": generate_nonce(16),
            "contentCheckOk": True,
            "racyCheckOk": True,
            "context": context,
        }
        if self.sends_signature_timestamp:
            body["playbackContext"] = {
                "contentPlaybackContext": {
                    "html5Preference": "HTML5_PREF_WANTS",
                    "signatureTimestamp": signature_timestamp,
                },
            }
        return body

    def build_request(
        self,
        video_id: str,
        cookie: str,
        signature_timestamp: Optional[int] = None,
    ) -> Tuple[Dict[str, str], Dict[str, str], Dict[str, Any]]:
        """Query parameters, headers and JSON body of one player call"""
        params = {"prettyPrint": "false", "t": generate_nonce(12), "id": video_id}
        headers = {
            "Content-Type": "application/json",
            "Cookie": cookie,
            "User-Agent": self.user_agent,
            "X-Goog-Api-Format-Version": "2",
        }
        return params, headers, self.build_body(video_id, signature_timestamp)


WEB = ClientProfile(
    name="WEB",
    client={"clientName": "WEB", "clientVersion": "2.20241126.01.00", **LOCALE},
    user_agent=UA_CHROME,
    sends_signature_timestamp=True,
)

WEB_EMBEDDED = ClientProfile(
    name="WEB_EMBEDDED",
    client={"clientName": "WEB_EMBEDDED_PLAYER", "clientVersion": "1.20240723.01.00", **LOCALE},
    user_agent=UA_CHROME,
    sends_signature_timestamp=True,
)

TV = ClientProfile(
    name="TV",
    client={"clientName": "TVHTML5", "clientVersion": "7.20241201.18.00", **LOCALE},
    user_agent="Mozilla/5.0 (ChromiumStylePlatform) Cobalt/Version",
    sends_signature_timestamp=True,
)

IOS = ClientProfile(
    name="IOS",
    client={
        "clientName": "IOS",
        "clientVersion": "19.42.1",
        "deviceMake": "Apple",
        "deviceModel": "iPhone16,2",
        "platform": "MOBILE",
        "osName": "iOS",
        "osVersion": "17.5.1.21F90",
        **MOBILE_LOCALE,
    },
    user_agent="com.google.ios.youtube/19.42.1(iPhone16,2; U; CPU iOS 17_5_1 like Mac OS X; en_US)",
    context_extra={
        "request": {"internalExperimentFlags": [], "useSsl": True},
        "user": {"lockedSafetyMode": False},
    },
)

ANDROID = ClientProfile(
    name="ANDROID",
    client={
        "clientName": "ANDROID",
        "clientVersion": "19.30.36",
        "platform": "MOBILE",
        "osName": "Android",
        "osVersion": "14",
        "androidSdkVersion": 34,
        **MOBILE_LOCALE,
    },
    user_agent="com.google.android.youtube/19.30.36 (Linux; U; Android 14; en_US) gzip",
)

PROFILES: Dict[str, ClientProfile] = {p.name: p for p in (WEB, WEB_EMBEDDED, TV, IOS, ANDROID)}
