import os
import requests
import pandas as pd
import streamlit as st

API_URL = os.getenv("API_URL", "http://localhost:8000")

st.set_page_config(page_title="Crypto Portfolio", layout="wide")
st.title("🪙 Crypto Portfolio (Client)")

# Health
try:
    h = requests.get(f"{API_URL}/health", timeout=3).json()
    st.success(f"API: {h['status']}")
except Exception as e:
    st.error(f"API not reachable at {API_URL}: {e}")
    st.stop()


def fmt_usd(value):
    return f"${value:,.2f}"


def fmt_pct(value):
    return f"{value:+.2f}%"


# Overview
portfolio = requests.get(f"{API_URL}/portfolio", timeout=8).json()

st.subheader("Overview")
c1, c2, c3, c4 = st.columns(4)
c1.metric("Total Portfolio Value", fmt_usd(portfolio["totalValue"]))
c2.metric("Total Gain/Loss", fmt_usd(portfolio["totalGainLoss"]),
          delta=fmt_pct(portfolio["totalGainLossPercentage"]))
c3.metric("Total Cost", fmt_usd(portfolio["totalCost"]))
c4.metric("Holdings", portfolio["totalHoldings"])

if st.button("Refresh prices"):
    r = requests.post(f"{API_URL}/portfolio/refresh", timeout=15)
    if r.status_code == 200 and r.json().get("refreshed"):
        st.rerun()
    else:
        st.warning("Failed to load prices, showing last known values.")

st.subheader("Holdings")
df = pd.DataFrame(portfolio["items"])
if df.empty:
    st.info("Your portfolio is empty. Add a coin below to start tracking it.")
else:
    if "currentPrice" not in df.columns:
        df["currentPrice"] = None
    df["price"] = df["currentPrice"].fillna(df["purchasePrice"])
    st.dataframe(
        df[["symbol", "name", "amount", "price", "purchasePrice", "purchaseDate",
            "currentValue", "gainLoss", "gainLossPercentage"]],
        use_container_width=True,
    )

    ecol1, ecol2, ecol3 = st.columns([2, 1, 1])
    selected = ecol1.selectbox("Holding", df["id"].tolist(),
                               format_func=lambda i: df.loc[df["id"] == i, "symbol"].iloc[0])
    new_amount = ecol2.number_input("New amount", min_value=0.0, value=1.0, step=0.1, format="%.6f")
    if ecol3.button("Update amount"):
        r = requests.patch(f"{API_URL}/portfolio/{selected}", json={"amount": float(new_amount)}, timeout=8)
        if r.status_code == 200:
            st.rerun()
        else:
            st.error(r.text)
    if ecol3.button("Delete holding"):
        requests.delete(f"{API_URL}/portfolio/{selected}", timeout=8)
        st.rerun()

st.subheader("Add a Holding")
if "flash" in st.session_state:
    st.success(st.session_state.pop("flash"))
query = st.text_input("Search coins", value="bitcoin")
matches = requests.get(f"{API_URL}/coins/search", params={"q": query}, timeout=8).json() if query else []
if matches:
    col1, col2, col3 = st.columns(3)
    coin = col1.selectbox("Coin", matches, format_func=lambda c: f"{c['name']} ({c['symbol']})")
    amount = col2.number_input("Amount", min_value=0.000001, value=1.0, step=0.1, format="%.6f")
    price = col3.number_input("Purchase price (USD)", min_value=0.0,
                              value=float(coin.get("currentPrice") or 0.0), step=1.0)

    if st.button("Add to portfolio"):
        payload = {
            "id": coin["id"],
            "symbol": coin["symbol"],
            "name": coin["name"],
            "image": coin.get("image") or "",
            "amount": float(amount),
            "purchasePrice": float(price),
        }
        r = requests.post(f"{API_URL}/portfolio", json=payload, timeout=8)
        if r.status_code == 200:
            st.session_state["flash"] = f"Added {amount} {coin['symbol']} to your portfolio."
            st.rerun()
        else:
            st.error(r.text)
elif query:
    st.caption("No coins match that search.")

st.subheader("Market")
mcol1, mcol2, mcol3, mcol4 = st.columns(4)
search = mcol1.text_input("Filter", value="")
sort_field = mcol2.selectbox("Sort by", ["market_cap", "volume", "price", "percent_change_24h"])
sort_order = mcol3.selectbox("Order", ["desc", "asc"])
price_filter = mcol4.selectbox("Show", ["all", "gainers", "losers"])

r = requests.get(
    f"{API_URL}/coins",
    params={"q": search, "sort_field": sort_field, "sort_order": sort_order, "price_filter": price_filter},
    timeout=15,
)
if r.status_code == 200:
    coins = pd.DataFrame(r.json())
    if coins.empty:
        st.caption("No coins match these filters.")
    else:
        st.dataframe(
            coins[["marketCapRank", "symbol", "name", "currentPrice",
                   "priceChangePercentage24h", "marketCap", "totalVolume"]],
            use_container_width=True,
        )
else:
    st.error(f"Failed to load market data: {r.text}")
