# ----------------
# Importations
# ----------------
import os
import tempfile

import pandas as pd
import streamlit as st

from huffcodec import HuffException, StudioConfig, compress_file, decompress_file, tree_to_dot

COMPRESS_TIMINGS = {
    "Count Symbols": "time_count",
    "Build Tree": "time_tree_build",
    "Make Codes": "time_codes",
    "Encode & Write": "time_encode",
    "Total": "time_total",
}
DECOMPRESS_TIMINGS = {
    "Decode & Write": "time_decode",
    "Total": "time_total",
}


def timings_table(stats: dict) -> pd.DataFrame:
    steps = COMPRESS_TIMINGS if "time_encode" in stats else DECOMPRESS_TIMINGS
    rows = [(step, stats.get(key, 0.0)) for step, key in steps.items()]
    return pd.DataFrame(rows, columns=["Step", "Time (s)"])


# ------------------
#  File Compression
# ------------------
def show_compress_report(root, stats: dict, cfg: StudioConfig):
    st.subheader("3) Compression Summary")
    col1, col2, col3 = st.columns(3)

    # compress_file skipped (already compressed type or .huff)
    if stats.get("skipped", False):
        st.warning(stats.get("note", "Compression skipped."))
        col1.metric("Original Size", f"{stats.get('original_bytes', 0)} bytes")
        col2.metric("Compressed Size", f"{stats.get('compressed_bytes', 0)} bytes")
        col3.metric("Space Saved", "N/A")
        return

    space_saved = stats.get("space_saved_percent")
    ratio = stats.get("compression_ratio")
    col1.metric("**Original Size**", f"{stats.get('original_bytes', 0)} bytes")
    col2.metric("**Compressed Size**", f"{stats.get('compressed_bytes', 0)} bytes")
    col3.metric("Space Saved", "N/A" if space_saved is None else f"{space_saved:.2f}%")

    if stats.get("note"):
        st.info(stats["note"])
    if ratio is None:
        st.markdown("*Compression ratio: N/A (empty file)*")
    else:
        st.markdown(f"*Compression ratio: {ratio:.4f}*")
    st.markdown(f"*Unique symbols: {stats.get('unique_symbols', 0)}*")
    st.markdown(f"*Header bits: {stats.get('header_bits')}, padding bits: {stats.get('pad_count')}*")

    st.divider()
    st.subheader("4) Processing Timings")
    st.table(timings_table(stats))
    st.divider()
    st.subheader("5) Huffman Tree")
    st.graphviz_chart(tree_to_dot(root, max_depth=cfg.tree_dot_depth))


# ----------------------
# File Decompression
# ---------------------
def show_decompress_report(stats: dict):
    st.subheader("3) Decompression Report")
    col1, col2 = st.columns(2)
    col1.metric("Compressed file size", f"{stats['compressed_size']} bytes")
    col2.metric("Restored file size", f"{stats['restored_size']} bytes")
    st.divider()
    st.subheader("4) Processing Timings")
    st.table(timings_table(stats))


def download_name(uploaded_name: str, action: str) -> str:
    if action == "Compress":
        return uploaded_name + ".huff"
    if uploaded_name.lower().endswith(".huff") and len(uploaded_name) > 5:
        return uploaded_name[:-5]
    return uploaded_name + "_restored"


def main():
    cfg = StudioConfig()
    st.set_page_config(page_title="Huffman Studio", layout="centered")
    st.title("Huffman Compression Studio")

    # ---------------------
    #    Instructions
    # ---------------------
    st.subheader("1) Instructions")
    st.markdown("""
*How to Use This File Compression Tool*

1. Upload a file using the button below.
2. Choose *Compress* for any file, *Decompress* for a `.huff` file.
3. Click *Process File* to start.
4. Download your file after processing.
""")
    st.divider()

    # -------------------
    # File Uploading
    # -------------------
    st.subheader("2) File Uploader")
    uploaded_file = st.file_uploader("Upload a file", type=None)
    if not uploaded_file:
        return

    suffix = os.path.splitext(uploaded_file.name)[1]
    with tempfile.NamedTemporaryFile(delete=False, suffix=suffix) as tmp:
        tmp.write(uploaded_file.read())
        tmp_path = tmp.name
    st.success(f"Uploaded file: {uploaded_file.name} ({os.path.getsize(tmp_path)} bytes)")

    action = st.radio("**Choose Action**", ["Compress", "Decompress"])
    out_path = tmp_path + (".huff" if action == "Compress" else "_restored")
    if action == "Compress":
        cfg.force = st.checkbox("Compress even if the file looks already compressed")

    if not st.button("Process File"):
        os.remove(tmp_path)
        return

    st.divider()
    try:
        with st.spinner(f"{action}ing file..."):
            if action == "Compress":
                root, stats = compress_file(tmp_path, out_path, cfg)
                show_compress_report(root, stats, cfg)
            else:
                try:
                    stats = decompress_file(tmp_path, out_path, cfg)
                    show_decompress_report(stats)
                except HuffException as e:
                    st.error(f"Error: {e}")
                    # partial output is not offered for download
                    os.remove(out_path)

        # compress_file does not create out_path when it skips
        if os.path.exists(out_path):
            with open(out_path, "rb") as f:
                # ------------------------
                #   File Downloading
                # ------------------------
                st.divider()
                st.subheader("Download Button")
                st.info(f"Download your {action.lower()}ed file here.")
                name = download_name(uploaded_file.name, action)
                st.download_button(
                    label=name,
                    data=f.read(),
                    file_name=name,
                    mime="application/octet-stream",
                )
        else:
            st.info("No output file was produced. Check the message above.")
    except OSError as e:
        st.error(f"Unexpected Error: {e}")
    finally:
        # cleanup
        for path in (tmp_path, out_path):
            if os.path.exists(path):
                os.remove(path)


if __name__ == "__main__":
    main()
