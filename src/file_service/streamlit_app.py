import os
from urllib.parse import unquote

import requests
import streamlit as st

from file_service.conversion.formats import extract_extension, media_type_for

API_BASE = os.getenv("FILE_SERVICE_API_BASE", os.getenv("API_BASE", "http://localhost:8080")).rstrip("/")
REQUEST_TIMEOUT_SEC = float(os.getenv("FILE_SERVICE_UI_TIMEOUT", "60"))


def _reset_state():
    for key in ["result", "error"]:
        if key in st.session_state:
            del st.session_state[key]
    # Bump the uploader key to clear any previously uploaded file widget state
    st.session_state["upload_key"] = st.session_state.get("upload_key", 0) + 1


def _fetch_json(path: str) -> dict[str, object] | None:
    try:
        resp = requests.get(f"{API_BASE}{path}", timeout=REQUEST_TIMEOUT_SEC)
    except requests.RequestException as e:
        st.session_state["error"] = f"Failed to connect to API: {e}"
        return None
    if resp.status_code != 200:
        st.session_state["error"] = f"Request failed: {resp.status_code} {resp.text}"
        return None
    return resp.json()


def _source_formats() -> list[str]:
    data = _fetch_json("/api/convert/formats/source") or {}
    return list(data.get("supportedSourceFormats", []))  # type: ignore[arg-type]


def _target_formats(source_format: str) -> list[str]:
    data = _fetch_json(f"/api/convert/formats/target/{source_format}") or {}
    return list(data.get("supportedTargetFormats", []))  # type: ignore[arg-type]


def _convert(uploaded_file, target_format: str) -> tuple[bytes, str] | None:
    files = {"file": (uploaded_file.name, uploaded_file.getvalue(), uploaded_file.type or "application/octet-stream")}
    try:
        resp = requests.post(f"{API_BASE}/api/convert/{target_format}", files=files, timeout=REQUEST_TIMEOUT_SEC)
    except requests.RequestException as e:
        st.session_state["error"] = f"Failed to connect to API: {e}"
        return None
    if resp.status_code != 200:
        try:
            body = resp.json()
        except ValueError:
            body = {}
        detail = body.get("detail")
        message = body.get("error") or (detail.get("message") if isinstance(detail, dict) else detail) or resp.text
        st.session_state["error"] = f"Conversion failed ({resp.status_code}): {message}"
        return None
    filename = resp.headers.get("Content-Disposition", "").partition('filename="')[2].partition('"')[0]
    return resp.content, unquote(filename) or f"converted.{target_format}"


def main() -> None:
    st.set_page_config(page_title="File Conversion Service", page_icon="🔁", layout="centered")
    st.title("🔁 File Conversion Service")
    st.caption(f"API base: {API_BASE}")

    if st.button("Restart", type="secondary"):
        _reset_state()
        st.rerun()

    if "upload_key" not in st.session_state:
        st.session_state["upload_key"] = 0
    sources = _source_formats()
    uploaded = st.file_uploader(
        "Upload a file (image, PDF, DOCX, XLSX, TXT)",
        type=sources or None,  # type: ignore[arg-type]
        key=f"uploader-{st.session_state['upload_key']}",
    )

    if uploaded:
        source_format = extract_extension(uploaded.name)
        targets = _target_formats(source_format) if source_format else []
        if not targets:
            st.warning(f"No conversions available for '{uploaded.name}'")
        else:
            target = st.selectbox("Convert to", targets)
            if st.button("Convert", type="primary"):
                with st.spinner("Converting..."):
                    res = _convert(uploaded, target)
                if res:
                    st.session_state["result"] = (res[0], res[1], target)
                    st.session_state.pop("error", None)

    if "result" in st.session_state:
        data, filename, target = st.session_state["result"]
        st.success(f"Converted to {filename} ({len(data)} bytes)")
        st.download_button(
            label=f"Download {target.upper()}",
            data=data,
            file_name=filename,
            mime=media_type_for(target),
        )

    if err := st.session_state.get("error"):
        st.error(err)


if __name__ == "__main__":
    main()
