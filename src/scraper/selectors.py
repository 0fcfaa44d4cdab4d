from typing import Final

# Selector strategy based on UI structure and behavior attributes.
# Avoid concrete ids because they change frequently in Google Maps.
SELECTOR_PATTERNS: Final[dict[str, tuple[str, ...]]] = {
    "REVIEWS_PANEL_READY": (
        "button[aria-label*='sort review' i]",
        "button[aria-label*='מיון ביקורות']",
        "input[aria-label*='search review' i]",
        "input[aria-label*='חיפוש ביקורות']",
        "div[role='radiogroup'][aria-label*='filter review' i]",
    ),
    "REVIEW_EXPAND": (
        "button[jsaction*='.review.expandReview']",
        "button[aria-label*='see more' i]",
        "button[aria-label*='עוד']",
    ),
    "SORT_BUTTON": (
        "button[aria-label*='sort review' i]",
        "button[aria-label*='most relevant' i]",
        "button[aria-label*='מיון']",
        "button[data-value='Sort']",
        "button[aria-haspopup='true'][aria-label*='sort' i]",
    ),
    "SORT_OPTION": (
        "div[role='menuitemradio']",
        "[role='menuitemradio']",
        "[role='menuitem']",
        "[role='option']",
        "select option",
    ),
    "DROPDOWN_TRIGGER": (
        "[aria-haspopup='menu']",
        "[aria-haspopup='listbox']",
        "[aria-haspopup='true']",
        "[aria-expanded='false']",
    ),
    "CLICKABLE": (
        "button",
        "[role='button']",
        "[role='menuitemradio']",
        "[role='option']",
    ),
    "ACTIVE_CONTROL": (
        "[role='menuitemradio'][aria-checked='true']",
        "[aria-selected='true']",
        "[aria-pressed='true']",
    ),
    "LOAD_MORE": (
        "button[jsaction*='pane.review.nextPage']",
        "button[aria-label*='more reviews' i]",
        "button[aria-label*='ביקורות נוספות']",
        "button:has-text('Load more')",
    ),
    "SCROLL_CONTAINER": (
        "div.m6QErb.DxyBCb[tabindex='-1']",
        "div[role='main'] div[tabindex='-1'][class*='m6QErb']",
        "div[role='feed']",
    ),
    "CONSENT_ACCEPT": (
        "button[aria-label*='accept all' i]",
        "button[aria-label*='קבל הכול']",
        "form[action*='consent'] button",
    ),
}

# Field selectors per language family. Order inside a family is the authored
# preference; the resolver re-sorts by specificity.
SELECTOR_FAMILIES: Final[dict[str, dict[str, tuple[str, ...]]]] = {
    "english": {
        "reviews_tab": (
            "button[role='tab'][aria-label*='review' i]",
            "[role='tab'][aria-label*='Reviews']",
            "[jsaction*='tab'][aria-label*='review' i]",
            "button[aria-label*='more reviews' i]",
            "button[role='tab']:has-text('Reviews')",
        ),
        "review_container": (
            "div.jftiEf[data-review-id]",
            "div[data-review-id][jsaction*='review']",
            "div[class*='jftiEf']",
            "[aria-label*='review' i][data-review-id]",
        ),
        "author_name": (
            "div.d4r55",
            "button[aria-label*='Photo of' i]",
            "div[class*='d4r55']",
        ),
        "rating": (
            "span.kvMYJc[role='img']",
            "[role='img'][aria-label*='star' i]",
            "span[aria-label*='stars' i]",
            "[aria-label*='out of 5' i]",
        ),
        "review_text": (
            ".MyEned .wiI7pd",
            "div.MyEned span.wiI7pd",
            "span[class*='wiI7pd']",
        ),
        "date": (
            "span.rsqaWe",
            "span[class*='rsqaWe']",
            "span:has-text('ago')",
        ),
    },
    "hebrew": {
        "reviews_tab": (
            "button[role='tab'][aria-label*='ביקורות']",
            "[role='tab'][aria-label*='ביקורות']",
            "[jsaction*='tab'][aria-label*='ביקורות']",
            "button[aria-label*='ביקורות נוספות']",
            "button[role='tab']:has-text('ביקורות')",
        ),
        "review_container": (
            "div.jftiEf[data-review-id]",
            "div[data-review-id][jsaction*='review']",
            "div[dir='rtl'][data-review-id]",
            "div[class*='jftiEf']",
        ),
        "author_name": (
            "div.d4r55",
            "button[aria-label*='תמונה של']",
            "div[dir='rtl'] div[class*='d4r55']",
        ),
        "rating": (
            "span.kvMYJc[role='img']",
            "[role='img'][aria-label*='כוכבים']",
            "[role='img'][aria-label*='כוכב']",
            "[aria-label*='מתוך 5']",
        ),
        "review_text": (
            ".MyEned .wiI7pd",
            "div[dir='rtl'] span.wiI7pd",
            "span[class*='wiI7pd']",
        ),
        "date": (
            "span.rsqaWe",
            "span[class*='rsqaWe']",
            "span:has-text('לפני')",
        ),
    },
    "generic": {
        "reviews_tab": (
            "[data-value='1'][role='tab']",
            "button[role='tab']",
            "button[data-tab-index='1']",
        ),
        "review_container": (
            "[data-review-id]",
            "[jsaction*='review']",
            "div[role='listitem']",
            "div[role='list'] > div",
        ),
        "author_name": (
            "[class*='author']",
            "[class*='name']",
            "span:first-child",
        ),
        "rating": (
            "[role='img'][aria-label]",
            "[aria-label*='rating' i]",
            "[title*='star' i]",
        ),
        "review_text": (
            "[class*='review-text']",
            "div[data-expandable-section]",
            "span[class*='fontBodyMedium']",
        ),
        "date": (
            "[class*='date']",
            "span[class*='fontBodySmall']",
        ),
    },
}

# Extra container selectors contributed by the detected interface generation.
INTERFACE_CONTAINER_SELECTORS: Final[dict[str, tuple[str, ...]]] = {
    "legacy": (
        ".section-review",
        ".review-item",
        ".gws-localreviews__google-review",
    ),
    "mobile": (
        "div[class*='compact'][data-review-id]",
        "[data-mobile-review]",
    ),
}

MODERN_LAYOUT_MARKERS: Final[tuple[str, ...]] = (
    "[data-review-id]",
    "[jsaction*='review']",
    "div[class*='fontBodyMedium']",
    "[role='listitem']",
)

LEGACY_LAYOUT_MARKERS: Final[tuple[str, ...]] = (
    ".section-review",
    ".review-item",
    ".gws-localreviews__google-review",
    ".section-listitem",
)

UI_VOCABULARY: Final[dict[str, dict[str, tuple[str, ...]]]] = {
    "hebrew": {
        "words": ("ממליץ מקומי", "ביקורות", "תמונות", "כוכבים", "כוכב", "לפני"),
        "ui_labels": ("ביקורות", "תמונות", "מידע", "מסלול", "שמירה"),
    },
    "english": {
        "words": ("local guide", "reviews", "photos", "stars", "star", "ago"),
        "ui_labels": ("Reviews", "Photos"),
    },
}

SORT_LABELS: Final[dict[str, dict[str, tuple[str, ...]]]] = {
    "recent": {
        "english": ("Newest", "Most recent", "Latest", "Recent", "Newest first"),
        "hebrew": ("החדשות ביותר", "הכי חדש", "חדש ביותר", "לאחרונה", "החדשים ביותר"),
        "generic": ("recent", "newest", "latest", "new"),
    },
    "worst": {
        "english": ("Lowest rating", "Lowest rated", "Lowest", "Worst rated", "Lowest first"),
        "hebrew": ("הדירוג הנמוך ביותר", "דירוג נמוך", "דירוג נמוך ביותר", "הכי גרוע"),
        "generic": ("lowest", "worst", "low"),
    },
    "best": {
        "english": ("Highest rating", "Highest rated", "Highest", "Best rated", "Top rated"),
        "hebrew": ("הדירוג הגבוה ביותר", "דירוג גבוה", "דירוג גבוה ביותר", "הכי טוב"),
        "generic": ("highest", "best", "high"),
    },
}

SORT_URL_PARAMS: Final[dict[str, tuple[tuple[str, str], ...]]] = {
    "recent": (("sort", "newest"), ("sort", "recent"), ("orderby", "date"), ("sort_by", "date")),
    "worst": (("sort", "lowest"), ("sort", "worst"), ("orderby", "rating_asc"), ("sort_by", "rating_low")),
    "best": (("sort", "highest"), ("sort", "best"), ("orderby", "rating_desc"), ("sort_by", "rating_high")),
}

SORT_URL_INDICATORS: Final[dict[str, tuple[str, ...]]] = {
    "recent": ("newest", "recent", "date", "latest"),
    "worst": ("lowest", "worst", "rating_asc", "rating_low"),
    "best": ("highest", "best", "rating_desc", "rating_high"),
}
