"""Render multi-page sample documents containing fake PII for local testing.

Each document is written twice: as a PDF (one image per page, via img2pdf)
and as a directory of PNG pages, so both input paths can be exercised.
"""

import os
from datetime import date

import img2pdf
from PIL import Image, ImageDraw, ImageFont

PAGE_SIZE = (1275, 1650)  # US Letter at 150 dpi


def render_page(lines, font_size=28, left=90, top=120, leading=48) -> Image.Image:
    page = Image.new("RGB", PAGE_SIZE, (255, 255, 255))
    draw = ImageDraw.Draw(page)
    try:
        font = ImageFont.truetype("DejaVuSans.ttf", font_size)
    except OSError:
        font = ImageFont.load_default()
    for i, line in enumerate(lines):
        draw.text((left, top + i * leading), line, fill=(0, 0, 0), font=font)
    return page


def write_document(output_dir: str, name: str, pages) -> None:
    page_dir = os.path.join(output_dir, name)
    os.makedirs(page_dir, exist_ok=True)
    paths = []
    for number, lines in enumerate(pages, start=1):
        path = os.path.join(page_dir, f"page-{number:03d}.png")
        render_page(lines).save(path)
        paths.append(path)
    with open(os.path.join(output_dir, f"{name}.pdf"), "wb") as f:
        f.write(img2pdf.convert(paths))


def main(output_dir: str = "data/in"):
    os.makedirs(output_dir, exist_ok=True)
    today = date.today().strftime("%Y-%m-%d")

    documents = {
        "employee_record": [
            [
                "Employee Record",
                f"Date: {today}",
                "Name: John A. Doe",
                "SSN: 123-45-6789",
                "Email: john.doe@example.com",
                "Phone: (415) 555-0123",
            ],
            [
                "Payroll",
                "IBAN: DE89 3704 0044 0532 0130 00",
                "Corporate card: 4111 1111 1111 1111",
            ],
            ["Notes", "No personal data on this page."],
        ],
        "support_ticket": [
            [
                "Support Ticket",
                "Requester: Chen Wei",
                "Email: c.wei@company.cn",
                "Alt Phone: +44 20 7946 0958",
            ],
            [
                "Escalation",
                "Callback: 212-555-0199",
                "Billing Email: alex.johnson@contoso.com",
            ],
        ],
    }

    for name, pages in documents.items():
        write_document(output_dir, name, pages)


if __name__ == "__main__":
    main()
