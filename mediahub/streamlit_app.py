"""Streamlit operator console for MediaHub."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any, Dict

import streamlit as st

# Ensure project root is on sys.path when launched via `streamlit run mediahub/streamlit_app.py`
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from mediahub.admin_views import asset_rows, format_bytes, health_metrics
from mediahub.config import AppConfig, load_config
from mediahub.errors import MediaHubError
from mediahub.library import MediaLibrary

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

CONFIG: AppConfig = load_config()


def set_page_config() -> None:
    """Configure Streamlit page settings."""
    st.set_page_config(
        page_title="MediaHub Console",
        page_icon="MH",
        layout="wide",
    )


def init_session_state() -> None:
    """Ensure session state keys exist."""
    defaults: Dict[str, Any] = {
        "library": None,
        "last_asset_id": None,
        "operator_id": "admin",
    }
    for key, value in defaults.items():
        st.session_state.setdefault(key, value)


def get_library() -> MediaLibrary:
    """Return a cached library instance."""
    if st.session_state["library"] is None:
        st.session_state["library"] = MediaLibrary(config=CONFIG)
    return st.session_state["library"]


def render_sidebar() -> None:
    """Display sidebar with configuration info and maintenance actions."""
    with st.sidebar:
        st.header("Configuration")
        canonical = CONFIG.canonical
        st.markdown(
            f"""
            - Data Root: `{CONFIG.paths.data_root}`
            - Canonical: `{canonical.container}` / `{canonical.video_codec}` @ `{canonical.resolution}`
            - Bitrate ceiling: `{canonical.video_bitrate_ceiling // 1000} kbps`
            - Analytics: `{"on" if CONFIG.analytics.enabled else "off"}`
            """
        )
        st.session_state["operator_id"] = st.text_input("Operator id", value=st.session_state["operator_id"])

        st.subheader("Maintenance")
        if st.button("Run recovery + retention sweep"):
            report, purged = get_library().run_maintenance()
            st.success(
                f"Published {len(report.published)}, failed {len(report.failed)} stuck assets; "
                f"purged {purged} old events."
            )


def handle_ingest(source: str, metadata: Dict[str, Any]) -> None:
    """Run the pipeline and report the outcome."""
    library = get_library()
    try:
        with st.spinner("Probing, transcoding and publishing... this may take a while for large files."):
            asset = library.ingest(source.strip(), metadata)
    except MediaHubError as exc:
        st.error(f"Ingestion failed during {exc.phase}: {exc}")
        return

    st.session_state["last_asset_id"] = asset.id
    st.success(f"Published '{asset.title}' ({asset.resolution}, {asset.codec}).")
    if not asset.thumbnail_path:
        st.warning("Thumbnail could not be generated; players will show a placeholder.")


def render_ingestion_form() -> None:
    """Render inputs for ingesting a file already on the server."""
    st.subheader("1. Ingest Upload")
    with st.form("ingest_form"):
        source = st.text_input("Uploaded file path", placeholder="/srv/uploads/tmp/upload-1234")
        title = st.text_input("Title")
        description = st.text_area("Description")
        category = st.text_input("Category", value="General")
        tags = st.text_input("Tags (comma separated)")
        submitted = st.form_submit_button("Ingest", type="primary")

    if submitted:
        if not source.strip():
            st.warning("Please provide the path of an uploaded file.")
            return
        handle_ingest(
            source,
            {
                "title": title,
                "description": description,
                "category": category,
                "tags": tags,
                "owner_user_id": st.session_state["operator_id"],
            },
        )


def render_catalog() -> None:
    """Show published assets with search, category filter and delete."""
    st.subheader("2. Catalog")
    library = get_library()
    cols = st.columns([2, 1, 1])
    search = cols[0].text_input("Search title/description")
    category = cols[1].text_input("Category filter")
    limit = int(cols[2].number_input("Limit", min_value=1, max_value=500, value=50))

    assets = library.list(category=category or None, search=search or None, limit=limit, user_id=st.session_state["operator_id"])
    if not assets:
        st.caption("No published media yet.")
        return
    st.dataframe(asset_rows(assets), use_container_width=True)

    options = {f"{asset.title} ({asset.id[:8]})": asset.id for asset in assets}
    selection = st.selectbox("Select asset", ["-- Select --", *options.keys()])
    if selection == "-- Select --":
        return
    asset = library.get_by_id(options[selection])
    detail = st.columns([1, 3])
    with detail[0]:
        if asset.thumbnail_path and Path(asset.thumbnail_path).exists():
            st.image(asset.thumbnail_path, use_container_width=True)
        else:
            st.caption("No thumbnail")
    with detail[1]:
        st.markdown(f"**{asset.title}** · {asset.category} · {format_bytes(asset.file_size_bytes)}")
        st.write(asset.description or "_No description._")
        st.caption(", ".join(asset.tags or []))
        if st.button("Delete asset", type="secondary"):
            if library.delete(asset.id, user_id=st.session_state["operator_id"]):
                st.success("Deleted.")
            else:
                st.info("Asset was already deleted.")


def render_progress_view() -> None:
    """Admin view of pending, processing and failed assets."""
    st.subheader("3. In Progress / Failed")
    assets = get_library().list_in_progress()
    if not assets:
        st.caption("Nothing in flight.")
        return
    st.dataframe(asset_rows(assets), use_container_width=True)


def render_analytics() -> None:
    """Display read-only analytics aggregates."""
    st.subheader("4. Analytics")
    library = get_library()
    metric_cols = st.columns(4)
    for col, (label, value) in zip(metric_cols, health_metrics(library.get_system_health())):
        col.metric(label, value)

    st.markdown("#### Popular")
    popular = library.get_popular(limit=10)
    st.table([{"title": item.title, "plays": item.play_count, "viewers": item.unique_viewers} for item in popular])

    st.markdown("#### Daily playback")
    stats = library.get_playback_stats()
    if stats:
        st.bar_chart({day.date: day.plays for day in stats})
    else:
        st.caption("No plays in the current window.")


def render_header() -> None:
    """Render the top-level header."""
    st.title("MediaHub Console")
    st.caption("Ingest uploads into the streaming catalog and keep an eye on the pipeline.")


def main() -> None:
    """Streamlit application entrypoint."""
    set_page_config()
    init_session_state()
    render_sidebar()
    render_header()
    render_ingestion_form()
    render_catalog()
    render_progress_view()
    render_analytics()


if __name__ == "__main__":
    main()
