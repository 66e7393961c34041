"""Workbook layout description injected into every layer.

A :class:`SheetSchema` names the sheets the ledger reads and writes, the
keyword groups used to find columns under drifting headers, the store
aliases used for normalization, and the reference time zone for dates.
Nothing in the package reads these tables from module globals; callers
build a schema (usually :func:`default_schema`) and pass it down, so an
alternate column layout is a different schema object rather than an edit.

Keyword group order matters. Column resolution lets the first declared field
claim an ambiguous header, so narrower fields (``next_*`` bookings, ``kana``)
are declared before the broader fields whose keywords they contain.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Sequence

from .constants import DEFAULT_TIME_ZONE, ConfigKey


KeywordGroups = Mapping[str, Sequence[str]]


SALES_KEYWORDS: KeywordGroups = MappingProxyType(
    {
        "id": ("レコードID", "record id"),
        "date": ("日付", "営業日", "date"),
        "store": ("店舗", "store"),
        "staff": ("担当", "スタッフ", "staff"),
        "hpb_points": ("HPBポイント", "ポイント"),
        "hpb_gift": ("HPBギフト", "ギフト"),
        "other_discount": ("その他割引", "割引"),
        "refund": ("返金",),
        "cash": ("現金", "cash"),
        "credit": ("クレジット", "カード", "credit"),
        "qr": ("QR", "PayPay", "電子マネー"),
        "product": ("物販", "商品"),
        "next_new_primary": ("次回予約新規HPB", "次回新規HPB"),
        "next_new_secondary": ("次回予約新規その他", "次回新規その他"),
        "next_existing": ("次回予約既存", "次回既存"),
        "next_acquaintance": ("次回予約知人", "次回知人"),
        "new_primary": ("新規HPB", "HPB新規"),
        "new_secondary": ("新規その他", "その他新規"),
        "existing": ("既存", "再来"),
        "acquaintance": ("知人", "紹介"),
        "review_count": ("口コミ", "レビュー", "review"),
        "blog_update_count": ("ブログ", "blog"),
        "sns_update_count": ("SNS", "インスタ", "instagram"),
    }
)

INTAKE_KEYWORDS: KeywordGroups = MappingProxyType(
    {
        "date": ("タイムスタンプ", "来店日", "日付"),
        "kana": ("フリガナ", "ふりがな", "カナ"),
        "name": ("氏名", "名前"),
        "gender": ("性別",),
        "birthday": ("生年月日", "誕生日"),
        "phone": ("電話",),
        "email": ("メール", "mail"),
        "address": ("住所",),
        "visit_history": ("来店歴", "ご来店", "初めて"),
        "referral": ("きっかけ", "知った"),
        "hair_concern": ("髪のお悩み", "髪の悩み", "ヘアのお悩み"),
        "scalp_concern": ("頭皮",),
        "eyelash_request": ("まつげ", "まつ毛", "アイラッシュ"),
        "hair_request": ("ご希望のスタイル", "ヘアスタイル", "希望"),
        "allergy": ("アレルギー",),
        "notes": ("備考", "ご要望", "その他"),
    }
)

STORE_ALIASES: Mapping[str, Sequence[str]] = MappingProxyType(
    {
        "chiba": ("千葉", "ちば", "chiba"),
        "funabashi": ("船橋", "ふなばし", "funabashi"),
        "tsudanuma": ("津田沼", "つだぬま", "tsudanuma"),
    }
)

SALES_HEADER: Sequence[str] = (
    "レコードID",
    "日付",
    "店舗",
    "担当者",
    "現金",
    "クレジット",
    "QR決済",
    "物販",
    "HPBポイント",
    "HPBギフト",
    "その他割引",
    "返金",
    "新規HPB",
    "新規その他",
    "既存",
    "知人紹介",
    "次回予約新規HPB",
    "次回予約新規その他",
    "次回予約既存",
    "次回予約知人紹介",
    "口コミ数",
    "ブログ更新",
    "SNS更新",
)

INTAKE_HEADER: Sequence[str] = (
    "タイムスタンプ",
    "お名前",
    "フリガナ",
    "性別",
    "生年月日",
    "電話番号",
    "メールアドレス",
    "ご住所",
    "当店のご来店歴",
    "当店を知ったきっかけ",
    "髪のお悩み",
    "頭皮の状態",
    "まつげのご希望",
    "ご希望のスタイル",
    "アレルギーの有無",
    "その他ご要望",
)

CONFIG_HEADER: Sequence[str] = ("Key", "Value", "UpdatedAt")
SESSION_HEADER: Sequence[str] = ("TokenHash", "Role", "Store", "Staff", "ExpiresAt", "CreatedAt")


@dataclass(frozen=True)
class SheetSchema:
    """Sheet names, header keywords and normalization tables for one workbook."""

    sales_sheet: str = "SalesLog"
    intake_sheets: Mapping[str, str] = field(
        default_factory=lambda: MappingProxyType(
            {
                "chiba": "Intake-Chiba",
                "funabashi": "Intake-Funabashi",
                "tsudanuma": "Intake-Tsudanuma",
            }
        )
    )
    config_sheets: Mapping[ConfigKey, str] = field(
        default_factory=lambda: MappingProxyType(
            {
                ConfigKey.GOALS: "Goals",
                ConfigKey.SALARIES: "Goals",
                ConfigKey.PASSWORDS: "Passwords",
                ConfigKey.SETTINGS: "Settings",
                ConfigKey.STAFF: "Settings",
            }
        )
    )
    sessions_sheet: str = "Sessions"
    sales_keywords: KeywordGroups = field(default_factory=lambda: SALES_KEYWORDS)
    intake_keywords: KeywordGroups = field(default_factory=lambda: INTAKE_KEYWORDS)
    store_aliases: Mapping[str, Sequence[str]] = field(default_factory=lambda: STORE_ALIASES)
    time_zone: str = DEFAULT_TIME_ZONE
    sales_header: Sequence[str] = SALES_HEADER
    intake_header: Sequence[str] = INTAKE_HEADER

    @property
    def stores(self) -> tuple[str, ...]:
        """Canonical store identifiers, in declaration order."""

        return tuple(self.store_aliases)

    def intake_sheet_for(self, store: str) -> str:
        """Return the intake sheet title for ``store``.

        Raises:
            KeyError: If the store has no intake sheet configured.
        """

        try:
            return self.intake_sheets[store]
        except KeyError as exc:
            raise KeyError(f"No intake sheet configured for store: {store}") from exc

    def config_sheet_for(self, key: ConfigKey) -> str:
        return self.config_sheets[key]


def default_schema(**overrides: object) -> SheetSchema:
    """Build the stock schema, replacing any attribute given in ``overrides``."""

    return SheetSchema(**overrides)  # type: ignore[arg-type]
