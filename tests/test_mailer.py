import asyncio

from rescuebox import mailer


def test_confirmation_html_escapes_user_text():
    html = mailer._confirmation_html("7-3-1700000000000", "<script>alert(1)</script>", "18:00 & 19:00")

    assert "<script>" not in html
    assert "&lt;script&gt;alert(1)&lt;/script&gt;" in html
    assert "18:00 &amp; 19:00" in html
    assert "7-3-1700000000000" in html


def test_confirmation_without_recipient_is_skipped():
    result = asyncio.run(mailer.send_reservation_confirmation(None, "1-1-1", "Caja", "18-19"))
    assert result == {"status": "skipped", "to": None}


def test_confirmation_without_smtp_only_logs(monkeypatch, caplog):
    monkeypatch.setattr(mailer, "MAIL_SERVER", None)

    result = asyncio.run(mailer.send_reservation_confirmation("ana@rescuebox.cl", "1-1-1", "Caja", "18-19"))

    assert result["status"] == "not_configured"
    assert "1-1-1" in caplog.text
