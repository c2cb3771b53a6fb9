import csv
import io
import logging
from pathlib import Path

from stockmeta.errors import ExportError
from stockmeta.models import MODE_PROMPT

logger = logging.getLogger(__name__)

STOCK_SITES = {
    "General": "General",
    "adobe-stock": "Adobe Stock",
    "shutterstock": "Shutterstock",
    "freepik": "Freepik",
    "getty": "Getty Images",
    "istock": "iStock",
    "dreamstime": "Dreamstime",
    "vecteezy": "Vecteezy",
}


def rename_extension(filename, file_extension):
    """Swap the file extension, or keep the name for 'default'"""
    if not file_extension or file_extension == "default":
        return filename
    stem, dot, _ = filename.rpartition(".")
    if not dot:
        return f"{filename}.{file_extension}"
    return f"{stem}.{file_extension}"


def _keywords(record, sep=", ", limit=None):
    keywords = record.keywords[:limit] if limit else record.keywords
    return sep.join(keywords)


# header, row builder(record, filename)
LAYOUTS = {
    "adobe-stock": (
        ["Filename", "Title", "Keywords", "Category"],
        lambda r, name: [name, r.title, _keywords(r), r.category],
    ),
    "shutterstock": (
        # Shutterstock's description column takes the title
        ["Filename", "Description", "Keywords", "Categorie"],
        lambda r, name: [name, r.title, _keywords(r, ",", 50), r.category],
    ),
    "freepik": (
        ["File name", "Title", "Keywords", "Prompt", "Category"],
        lambda r, name: [name, r.title, _keywords(r), "", r.category],
    ),
    "getty": (
        ["Filename", "Title", "Description", "Keywords", "Category"],
        lambda r, name: [name, r.title, r.description, _keywords(r), r.category],
    ),
    "istock": (
        ["filename", "title", "keywords", "category", "release"],
        lambda r, name: [name, r.title, _keywords(r), r.category, ""],
    ),
    "dreamstime": (
        ["filename", "title", "keywords", "category", "exclusive", "editorial",
         "model_releases", "property_releases", "image_id", "mr_ids"],
        lambda r, name: [name, r.title, _keywords(r), r.category, "", "", "", "", "", ""],
    ),
    "vecteezy": (
        ["Filename", "Title", "Description", "Keywords"],
        lambda r, name: [name, r.title, r.description, _keywords(r)],
    ),
    "General": (
        ["Filename", "Title", "Description", "Keywords", "Category"],
        lambda r, name: [name, r.title, r.description, _keywords(r), r.category],
    ),
}

PROMPT_HEADER = ["serial number", "Description"]


def build_table(results, site="General", file_extension="default"):
    """Return (mode, header, rows) for the results of the first result's mode"""
    if not results:
        raise ExportError("No metadata available to export.")

    mode = results[0].mode
    matching = [r for r in results if r.mode == mode]
    if mode == MODE_PROMPT:
        rows = [[index, r.description] for index, r in enumerate(matching, start=1)]
        return mode, PROMPT_HEADER, rows

    header, row_for = LAYOUTS.get(site, LAYOUTS["General"])
    rows = [row_for(r, rename_extension(r.filename, file_extension)) for r in matching]
    if not rows:
        raise ExportError("No data to export for the selected mode.")
    return mode, header, rows


def _render(header, rows):
    buffer = io.StringIO()
    # Marketplace templates carry a bare header; every data cell is quoted
    csv.writer(buffer, lineterminator="\n").writerow(header)
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerows(["" if v is None else v for v in row] for row in rows)
    return buffer.getvalue()


def to_csv_text(results, site="General", file_extension="default"):
    _, header, rows = build_table(results, site, file_extension)
    return _render(header, rows)


def export_filename(site, mode):
    suffix = "prompts" if mode == MODE_PROMPT else "metadata"
    return f"{site}_{suffix}.csv"


def save_to_csv(results, site="General", file_extension="default", output_dir=".", csv_path=None):
    """Write the marketplace CSV and return its path"""
    mode, header, rows = build_table(results, site, file_extension)
    path = Path(csv_path) if csv_path else Path(output_dir) / export_filename(site, mode)
    path.parent.mkdir(parents=True, exist_ok=True)
    # UTF-8 with BOM for better compatibility with marketplace uploaders
    with open(path, mode="w", newline="", encoding="utf-8-sig") as csv_file:
        csv_file.write(_render(header, rows))
    logger.info("Exported %d row(s) to %s", len(rows), path)
    return path
