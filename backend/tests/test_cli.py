from __future__ import annotations

import json

import pytest
from conftest import FakeShopify, connection_page

from shopify_extractor import cli
from shopify_extractor.core.models import settings


@pytest.fixture
def configured(monkeypatch, no_delays):
    monkeypatch.setattr(settings, "SHOPIFY_STORE_NAME", "demo-shop")
    monkeypatch.setattr(settings, "SHOPIFY_ACCESS_TOKEN", "shpat_test")


def resource_responder(query, variables):
    root = query.split("(first: $first")[0].rsplit(None, 1)[-1]
    if variables.get("after") is None:
        return {"data": {root: connection_page([{"id": f"{root}-1"}], True, "c1")}}
    return {"data": {root: connection_page([{"id": f"{root}-2"}], False, None)}}


def test_templates_lists_enabled_templates(capsys):
    assert cli.main(["templates"]) == 0

    out = capsys.readouterr().out
    assert "product-variants" in out
    assert "discount-usage" not in out


def test_missing_credentials_exit_with_code_1(monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "SHOPIFY_STORE_NAME", "")
    monkeypatch.setattr(settings, "SHOPIFY_ACCESS_TOKEN", "")

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["extract", "products", "--data-dir", str(tmp_path)])
    assert excinfo.value.code == 1


def test_extract_all_writes_pages_consolidated_files_and_summary(monkeypatch, tmp_path, configured):
    fake = FakeShopify(resource_responder)
    monkeypatch.setattr(cli, "ShopifyGraphQLClient", fake.client)

    assert cli.main(["extract", "all", "--limit", "1", "--data-dir", str(tmp_path)]) == 0

    for resource in ("products", "orders", "customers"):
        assert (tmp_path / f"{resource}_page_1.json").exists()
        assert (tmp_path / f"{resource}_page_2.json").exists()
        items = json.loads((tmp_path / f"{resource}_all.json").read_text(encoding="utf-8"))
        assert [i["id"] for i in items] == [f"{resource}-1", f"{resource}-2"]
    summary = json.loads((tmp_path / "extraction_summary.json").read_text(encoding="utf-8"))
    assert summary["counts"] == {"products": 2, "orders": 2, "customers": 2}
    assert all(r["payload"]["variables"]["first"] == 1 for r in fake.requests)


def test_dependent_writes_csv(monkeypatch, tmp_path, configured):
    def respond(query, variables):
        if "product(id: $id)" in query:
            return {"data": {"product": {"id": variables["id"], "metafields": {"edges": [{"node": {"key": "k"}}]}}}}
        return {"data": {"products": connection_page([{"id": "p1", "title": "One"}], False, None)}}

    fake = FakeShopify(respond)
    monkeypatch.setattr(cli, "ShopifyGraphQLClient", fake.client)

    code = cli.main(["dependent", "metafields", "--format", "csv", "--data-dir", str(tmp_path)])

    assert code == 0
    [path] = list(tmp_path.glob("metafields_*.csv"))
    text = path.read_text(encoding="utf-8")
    assert text.splitlines()[0] == "id,title,detailedMetafields"
    assert '{""key"": ""k""}' in text


def test_dependent_unknown_template_fails(tmp_path, configured):
    assert cli.main(["dependent", "nope", "--data-dir", str(tmp_path)]) == 1


@pytest.mark.parametrize(
    "argv",
    [
        ["dependent", "metafields", "--batch-size", "0"],
        ["dependent", "metafields", "--batch-size", "many"],
        ["extract", "products", "--limit", "-1"],
    ],
)
def test_non_positive_sizes_are_rejected_by_the_parser(argv, capsys, configured):
    with pytest.raises(SystemExit) as excinfo:
        cli.main(argv)

    err = capsys.readouterr().err
    assert excinfo.value.code == 2
    assert "must be at least 1" in err or "invalid integer" in err


def test_setup_writes_env_file(monkeypatch, tmp_path):
    answers = iter(["cid", "shpat_abc", "my-shop", ""])
    monkeypatch.setattr("builtins.input", lambda prompt="": next(answers))
    env_file = tmp_path / ".env"

    assert cli.main(["setup", "--env-file", str(env_file)]) == 0

    env = env_file.read_text(encoding="utf-8")
    assert "SHOPIFY_CLIENT_ID=cid" in env
    assert "SHOPIFY_ACCESS_TOKEN=shpat_abc" in env
    assert "SHOPIFY_STORE_NAME=my-shop" in env
    assert "SHOPIFY_API_VERSION=2025-01" in env


def test_setup_keeps_existing_file_unless_confirmed(monkeypatch, tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("SHOPIFY_STORE_NAME=keep\n", encoding="utf-8")
    monkeypatch.setattr("builtins.input", lambda prompt="": "n")

    assert cli.main(["setup", "--env-file", str(env_file)]) == 0
    assert env_file.read_text(encoding="utf-8") == "SHOPIFY_STORE_NAME=keep\n"
