"""HTML documents handed to the PDF render service."""

from __future__ import annotations

from datetime import datetime
from html import escape

from src.domain.models import CertificateData, LevelCertificateData

_STYLE = (
    "@page{size:A4 landscape;margin:0}"
    "body{font-family:Georgia,serif;margin:0;padding:48px;text-align:center;color:#1f2933}"
    ".frame{border:6px double #3e4c59;padding:40px;min-height:560px}"
    ".site{letter-spacing:4px;text-transform:uppercase;font-size:14px;color:#616e7c}"
    "h1{font-size:42px;margin:24px 0 8px}"
    ".name{font-size:32px;margin:24px 0;border-bottom:1px solid #9aa5b1;display:inline-block}"
    ".meta{font-size:13px;color:#52606d;margin-top:40px}"
    "ul{list-style:none;padding:0}"
)


def _format_date(moment: datetime | None) -> str:
    return moment.strftime("%d.%m.%Y") if moment else "-"


def _logo(logo_url: str | None) -> str:
    if not logo_url:
        return ""
    return f'<img src="{escape(logo_url)}" alt="" style="max-height:64px">'


def _document(title: str, body: str) -> str:
    return (
        "<!DOCTYPE html>"
        '<html lang="en"><head><meta charset="utf-8">'
        f"<title>{escape(title)}</title><style>{_STYLE}</style></head>"
        f'<body><div class="frame">{body}</div></body></html>'
    )


def build_certificate_html(data: CertificateData) -> str:
    description = (
        f"<p>{escape(data.course_description)}</p>" if data.course_description else ""
    )
    valid_until = (
        f"<p>Valid until {_format_date(data.expires_at)}</p>" if data.expires_at else ""
    )
    body = (
        f"{_logo(data.logo_url)}"
        f'<div class="site">{escape(data.site_title)}</div>'
        "<h1>Certificate of Completion</h1>"
        "<p>This certifies that</p>"
        f'<div class="name">{escape(data.user_name)}</div>'
        "<p>has successfully completed the course</p>"
        f"<h2>{escape(data.course_title)}</h2>"
        f"{description}"
        f"<p>Instructor: {escape(data.instructor_name)}</p>"
        f"<p>Completed on {_format_date(data.completed_at)}</p>"
        f"{valid_until}"
        f'<div class="meta">Certificate no. {escape(data.certificate_number)}</div>'
    )
    return _document(f"Certificate - {data.user_name}", body)


def build_level_certificate_html(data: LevelCertificateData) -> str:
    courses = "".join(f"<li>{escape(title)}</li>" for title in data.course_titles)
    description = f"<p>{escape(data.level_description)}</p>" if data.level_description else ""
    valid_until = (
        f"<p>Valid until {_format_date(data.expires_at)}</p>" if data.expires_at else ""
    )
    body = (
        f"{_logo(data.logo_url)}"
        f'<div class="site">{escape(data.site_title)}</div>'
        "<h1>Certification</h1>"
        "<p>This certifies that</p>"
        f'<div class="name">{escape(data.user_name)}</div>'
        "<p>has achieved the certification level</p>"
        f"<h2>{escape(data.level_name)}</h2>"
        f"{description}"
        f"<p>Required courses completed:</p><ul>{courses}</ul>"
        f"<p>Achieved on {_format_date(data.achieved_at)}</p>"
        f"{valid_until}"
        f'<div class="meta">Certificate no. {escape(data.certificate_number)}</div>'
    )
    return _document(f"Certification - {data.user_name}", body)
