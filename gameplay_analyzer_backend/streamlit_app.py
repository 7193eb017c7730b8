"""Streamlit frontend for the Gameplay Video Analyzer."""
import io
import os

import requests
import streamlit as st
from PIL import Image

from pipeline.config import DOWN_OPTIONS, MODIFIER_OPTIONS, QUICK_ADD_KEYS, TAG_OPTIONS

# Backend API URL
API_URL = os.getenv("API_URL", "http://localhost:8000")

# Page config
st.set_page_config(
    page_title="Gameplay Video Analyzer",
    page_icon="🏈",
    layout="wide"
)

st.title("🏈 Gameplay Video Analyzer")
st.markdown("Upload → Scrub → Annotate → Analyze → Graph")

# Initialize session state
if 'video_id' not in st.session_state:
    st.session_state.video_id = None
if 'video_info' not in st.session_state:
    st.session_state.video_info = None
if 'analysis' not in st.session_state:
    st.session_state.analysis = None


def call_api(endpoint: str, method: str = "GET", data: dict = None, files: dict = None,
             params: dict = None, raw: bool = False):
    """Helper to call FastAPI backend."""
    url = f"{API_URL}{endpoint}"
    try:
        if method == "GET":
            response = requests.get(url, params=params)
        elif method == "POST":
            if files:
                response = requests.post(url, files=files, params=params)
            else:
                response = requests.post(url, json=data, params=params)
        elif method == "PUT":
            response = requests.put(url, json=data)
        elif method == "PATCH":
            response = requests.patch(url, json=data)
        elif method == "DELETE":
            response = requests.delete(url)
        else:
            raise ValueError(f"Unsupported method: {method}")
        response.raise_for_status()
        return response if raw else response.json()
    except requests.exceptions.ConnectionError:
        st.error(f"❌ Cannot connect to backend. Make sure FastAPI server is running on {API_URL}")
        st.stop()
    except requests.exceptions.HTTPError as e:
        st.error(f"❌ API Error: {e.response.text}")
        return None
    except Exception as e:
        st.error(f"❌ Error: {str(e)}")
        return None


def video_path(suffix: str = "") -> str:
    return f"/videos/{st.session_state.video_id}{suffix}"


# Sidebar for navigation
st.sidebar.title("Workflow")
step = st.sidebar.radio(
    "Select Step",
    ["1. Load Video", "2. Schema & Annotations", "3. Mark Windows", "4. Analyze"]
)

if st.session_state.video_id:
    info = st.session_state.video_info or {}
    st.sidebar.markdown(f"**Source:** {info.get('name', st.session_state.video_id)}")
    if st.sidebar.button("Clear source"):
        call_api(video_path(), method="DELETE")
        st.session_state.video_id = None
        st.session_state.video_info = None
        st.session_state.analysis = None
        st.rerun()

# Step 1: Load Video
if step == "1. Load Video":
    st.header("Step 1: Load Video")

    tab_file, tab_url = st.tabs(["Local file", "Video URL"])

    with tab_file:
        uploaded_file = st.file_uploader("Choose a video file", type=['mp4'])
        if uploaded_file is not None and st.button("Upload to Backend"):
            with st.spinner("Uploading video..."):
                files = {"file": (uploaded_file.name, uploaded_file, uploaded_file.type)}
                result = call_api("/videos", method="POST", files=files)
                if result:
                    st.session_state.video_id = result["video_id"]
                    st.session_state.video_info = result
                    st.session_state.analysis = None
                    st.success(f"✅ Video uploaded! ID: {result['video_id']}")

    with tab_url:
        url = st.text_input("Video URL", placeholder="https://www.youtube.com/watch?v=...")
        st.caption("YouTube videos can be annotated but not analyzed.")
        if st.button("Load URL", disabled=not url.strip()):
            result = call_api("/videos/url", method="POST", data={"url": url})
            if result:
                st.session_state.video_id = result["video_id"]
                st.session_state.video_info = result
                st.session_state.analysis = None
                st.success("✅ URL registered")

    if st.session_state.video_info:
        info = st.session_state.video_info
        if info.get("fps"):
            st.info(f"FPS: {info['fps']:.2f}, Frames: {info['num_frames']}, Duration: {info['duration_seconds']}s")

# Step 2: Schema & Annotations
elif step == "2. Schema & Annotations":
    st.header("Step 2: Schema & Annotations")

    if not st.session_state.video_id:
        st.warning("⚠️ Please load a video first (Step 1)")
    else:
        schema_file = st.file_uploader("Load schema (CSV)", type=['csv'])
        col_load, col_clear = st.columns(2)
        with col_load:
            if schema_file is not None and st.button("Import schema"):
                files = {"file": (schema_file.name, schema_file, "text/csv")}
                report = call_api(video_path("/schema"), method="POST", files=files)
                if report:
                    st.success(f"✅ Imported {report['imported']} rows "
                               f"({report['skipped']} skipped, {report['duplicates']} duplicates)")
        with col_clear:
            if st.button("Clear schema"):
                call_api(video_path("/schema"), method="DELETE")
                st.session_state.analysis = None

        st.markdown("---")
        tags = call_api(video_path("/annotations/tags")) or ["All"]
        col_q, col_tag = st.columns([3, 1])
        with col_q:
            query = st.text_input("Search (start/end, tag, modifier, down)")
        with col_tag:
            tag_filter = st.selectbox("Tag", tags)

        rows = call_api(video_path("/annotations"), params={"q": query, "tag": tag_filter}) or []
        if not rows:
            st.info("No annotations match your filters.")
        else:
            st.dataframe(
                [{k: r[k] for k in ("start_time", "end_time", "tag_name", "modifier", "down")} for r in rows],
                use_container_width=True,
            )

            labels = {r["id"]: f"{r['start_time']}  {r['tag_name']}" for r in rows}
            selected = st.multiselect("Select annotations", list(labels), format_func=lambda i: labels[i])
            if selected and st.button("Delete selected"):
                call_api(video_path("/annotations/bulk-delete"), method="POST", data={"ids": selected})
                st.rerun()

            if len(selected) == 1:
                current = next(r for r in rows if r["id"] == selected[0])
                with st.form("edit_annotation"):
                    new_tag = st.text_input("Tag name", value=current["tag_name"])
                    new_mod = st.text_input("Modifier", value=current["modifier"])
                    new_down = st.text_input("Down", value=current["down"], placeholder="1-4")
                    if st.form_submit_button("Save"):
                        result = call_api(video_path(f"/annotations/{current['id']}"), method="PATCH",
                                          data={"tag_name": new_tag, "modifier": new_mod, "down": new_down})
                        if result and not result["updated"]:
                            st.warning("Another annotation already uses that tag at this instant.")

        st.markdown("### Export")
        col_csv, col_json = st.columns(2)
        for col, fmt, mime in ((col_csv, "csv", "text/csv"), (col_json, "json", "application/json")):
            with col:
                resp = call_api(video_path("/annotations/export"), params={"format": fmt}, raw=True)
                if resp is not None:
                    filename = resp.headers.get("content-disposition", "").split("filename=")[-1].strip('"')
                    st.download_button(f"Export {fmt.upper()}", resp.content, file_name=filename,
                                       mime=mime, disabled=not rows)

# Step 3: Mark Windows
elif step == "3. Mark Windows":
    st.header("Step 3: Mark Windows")

    if not st.session_state.video_id:
        st.warning("⚠️ Please load a video first (Step 1)")
    else:
        playhead = call_api(video_path("/playhead"), method="POST", data={})
        col_frame, col_ctrl = st.columns([2, 1])

        with col_ctrl:
            time_text = st.text_input("Current time", value=playhead["display"] if playhead else "00:00.00")
            if st.button("Go"):
                result = call_api(video_path("/playhead"), method="POST", data={"text": time_text})
                if result and not result["accepted"]:
                    st.warning("Unrecognized time; kept the previous position.")
                st.rerun()

            col_prev, col_next = st.columns(2)
            with col_prev:
                if st.button("◀ Step"):
                    call_api(video_path("/playhead"), method="POST", data={"step": -1})
                    st.rerun()
            with col_next:
                if st.button("Step ▶"):
                    call_api(video_path("/playhead"), method="POST", data={"step": 1})
                    st.rerun()

            st.markdown("---")
            current = playhead["current"] if playhead else 0.0
            col_s, col_e = st.columns(2)
            with col_s:
                if st.button("Mark start ["):
                    call_api(video_path("/selection"), method="PUT", data={"start": current})
            with col_e:
                if st.button("Mark end ]"):
                    call_api(video_path("/selection"), method="PUT", data={"end": current})

            selection = call_api(video_path("/selection")) or {}
            st.write(f"Start: {selection.get('start')}  End: {selection.get('end')}")
            if selection.get("conflict"):
                st.error("Selection start overlaps an existing annotation.")

            with st.form("annotate"):
                tag = st.selectbox("Tag", TAG_OPTIONS)
                custom = st.text_input("…or custom tag")
                modifier = st.selectbox("Modifier", [""] + MODIFIER_OPTIONS)
                down = st.selectbox("Down", [""] + DOWN_OPTIONS)
                if st.form_submit_button("Add annotation", disabled=bool(selection.get("conflict"))):
                    call_api(video_path("/selection/commit"), method="POST",
                             data={"tag": custom.strip() or tag, "modifier": modifier, "down": down})
                    st.rerun()

            if st.button("Clear selection"):
                call_api(video_path("/selection"), method="DELETE")
                st.rerun()

            st.markdown("### Quick add at playhead")
            quick_cols = st.columns(len(QUICK_ADD_KEYS))
            for col, (key, label) in zip(quick_cols, QUICK_ADD_KEYS.items()):
                with col:
                    if st.button(label):
                        call_api(video_path("/annotations/quick"), method="POST", data={"key": key})

        with col_frame:
            info = st.session_state.video_info or {}
            if info.get("fps"):
                frame_idx = int(round((playhead["current"] if playhead else 0.0) * info["fps"]))
                frame_idx = min(frame_idx, max(0, info["num_frames"] - 1))
                resp = call_api(video_path(f"/frame/{frame_idx}"), raw=True)
                if resp is not None:
                    st.image(Image.open(io.BytesIO(resp.content)), use_container_width=True)
            else:
                st.info("Frame preview is not available for this source.")

# Step 4: Analyze
elif step == "4. Analyze":
    st.header("Step 4: Analyze")

    if not st.session_state.video_id:
        st.warning("⚠️ Please load a video first (Step 1)")
    else:
        if st.button("Analyze"):
            with st.spinner("Sampling annotated windows and running detection..."):
                result = call_api(video_path("/analyze"), method="POST")
                if result:
                    st.session_state.analysis = result
                    st.info(result["message"])

        analysis = st.session_state.analysis or call_api(video_path("/analysis"))
        results = (analysis or {}).get("results")

        if not results:
            st.info("Run Analyze to see results here.")
        else:
            st.subheader("Defenders in front of the ball carrier")
            for tag, counts in results.items():
                st.markdown(f"**{tag}**  Counts: [{', '.join(str(c) for c in counts)}]")
                st.line_chart(counts)

            resp = call_api(video_path("/analysis/export"), raw=True)
            if resp is not None:
                filename = resp.headers.get("content-disposition", "").split("filename=")[-1].strip('"')
                st.download_button("Export JSON", resp.content, file_name=filename, mime="application/json")

            if st.button("Clear results"):
                call_api(video_path("/analysis"), method="DELETE")
                st.session_state.analysis = None
                st.rerun()
