_DEFAULT_FINANCIAL_MAX_RESULTS = 10
_DEFAULT_WEB_MAX_RESULTS = 5
_MAX_RESULTS_LIMIT = 20
_MAX_CONTENT_CHARS = 4_000

FINANCIAL_DATA_SOURCES: dict[str, list[str]] = {
    "market_data": [
        "valyu/valyu-stocks-US",
        "valyu/valyu-crypto",
        "valyu/valyu-forex",
        "valyu/valyu-market-movers-US",
    ],
    "earnings": ["valyu/valyu-earnings-US", "valyu/valyu-statistics-US"],
    "sec_filings": ["valyu/valyu-sec-filings"],
    "news": [
        "wiley/wiley-finance-books",
        "wiley/wiley-finance-papers",
        "bloomberg.com",
        "reuters.com",
        "wsj.com",
        "marketwatch.com",
        "ft.com",
        "cnbc.com",
        "investopedia.com",
        "seekingalpha.com",
        "morningstar.com",
        "fool.com",
        "barrons.com",
        "yahoo.com",
        "forbes.com",
        "businessinsider.com",
        "economist.com",
        "markets.businessinsider.com",
        "nasdaq.com",
        "fidelity.com",
        "zacks.com",
        "tradingview.com",
    ],
    "regulatory": ["sec.gov", "federalreserve.gov", "treasury.gov"],
}
