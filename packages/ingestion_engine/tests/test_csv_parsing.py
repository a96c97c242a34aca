from io import StringIO

from packages.ingestion_engine.import_transactions import parse_csv_content, parse_file


def test_parse_csv_keeps_source_headers():
    """
    Rows are keyed by the export's own column labels (trimmed) so the
    bank source mapping can pick them out.
    """
    csv_content = """Transaction ID, Date ,Time,Name,Amount,Currency
tx_1,15/11/2025,14:30:00,Tesco,-23.45,GBP"""

    rows = parse_csv_content(StringIO(csv_content))

    assert rows == [
        {
            "Transaction ID": "tx_1",
            "Date": "15/11/2025",
            "Time": "14:30:00",
            "Name": "Tesco",
            "Amount": "-23.45",
            "Currency": "GBP",
        }
    ]


def test_parse_csv_empty_cells_become_none():
    csv_data = """Name,Amount,Notes and #tags
Tesco,-5.00,
Coffee,-3.10,work"""

    rows = parse_csv_content(StringIO(csv_data))

    assert rows[0]["Notes and #tags"] is None
    assert rows[1]["Notes and #tags"] == "work"


def test_parse_csv_preserves_identifier_text():
    """Numeric-looking ids and amounts are not reinterpreted as floats."""
    csv_data = """Transaction ID,Amount
00012,1000.10"""

    rows = parse_csv_content(StringIO(csv_data))

    assert rows[0]["Transaction ID"] == "00012"
    assert rows[0]["Amount"] == "1000.10"


def test_parse_csv_skips_blank_lines():
    csv_data = "Name,Amount\nTesco,-1.00\n,\nAldi,-2.00\n"

    rows = parse_csv_content(StringIO(csv_data))

    assert [r["Name"] for r in rows] == ["Tesco", "Aldi"]


def test_parse_file_tsv():
    content = "Description\tAmount\nUber\t-12.00\n".encode("utf-8")

    rows = parse_file(content, "revolut.tsv")

    assert rows == [{"Description": "Uber", "Amount": "-12.00"}]


def test_parse_file_csv_with_bom():
    content = "\ufeffDescription,Amount\nUber,-12.00\n".encode("utf-8")

    rows = parse_file(content, "export.csv")

    assert list(rows[0]) == ["Description", "Amount"]
