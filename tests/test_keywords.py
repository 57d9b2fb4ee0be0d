import pytest

from feedpush.errors import ConfigError
from feedpush.keywords import KeywordFilter, load_keywords, parse_keywords
from feedpush.models import KeywordRuleSet, WordGroup

from conftest import make_article


def test_parse_groups_and_prefixes():
    rules = parse_keywords(
        "# comment\n"
        "+Rust\n"
        "gc\n"
        "alloc\n"
        "\n"
        "TypeScript\n"
        "# comments do not end a group\n"
        "+Vite\n"
        "!ad\n"
        "\n\n"
        "!hiring\n"
    )
    assert rules.groups == [
        WordGroup(required=["Rust"], any=["gc", "alloc"]),
        WordGroup(required=["Vite"], any=["TypeScript"]),
    ]
    assert rules.exclude_words == ["ad", "hiring"]


def test_parse_ignores_empty_prefixed_words():
    rules = parse_keywords("+\n!\n  \nword\n")
    assert rules.groups == [WordGroup(required=[], any=["word"])]
    assert rules.exclude_words == []


def test_parse_empty_file():
    rules = parse_keywords("# nothing here\n\n")
    assert rules.groups == []
    assert rules.exclude_words == []


def test_rust_example_rules():
    rules = KeywordRuleSet(groups=[WordGroup(required=["rust"], any=["gc", "alloc"])], exclude_words=["ad"])
    f = KeywordFilter(rules)
    assert f.matches(make_article("a", title="Rust GC internals", summary=""))
    assert not f.matches(make_article("b", title="Rust ad campaign", summary=""))
    assert not f.matches(make_article("c", title="Rust networking", summary=""))


def test_required_only_group_matches_on_required():
    f = KeywordFilter(KeywordRuleSet(groups=[WordGroup(required=["react", "hooks"])]))
    assert f.matches(make_article("a", title="React Hooks in depth", summary=None))
    assert not f.matches(make_article("b", title="React Server Components", summary=None))


def test_any_group_passing_is_enough():
    f = KeywordFilter(parse_keywords("+rust\nasync\n\nvite\n"))
    assert f.matches(make_article("a", title="Vite 6 released"))
    assert f.matches(make_article("b", title="Async Rust"))
    assert not f.matches(make_article("c", title="Go 1.23"))


def test_exclude_checked_even_without_groups():
    f = KeywordFilter(KeywordRuleSet(exclude_words=["招聘"]))
    assert f.matches(make_article("a", title="前端性能优化"))
    assert not f.matches(make_article("b", title="字节跳动", summary="前端招聘"))


def test_matching_uses_summary_and_is_case_insensitive():
    f = KeywordFilter(parse_keywords("TypeScript\n"))
    assert f.matches(make_article("a", title="Weekly", summary="new TYPESCRIPT features"))


def test_filter_keeps_order():
    f = KeywordFilter(parse_keywords("vite\n"))
    articles = [make_article(str(i), title=t) for i, t in enumerate(["Vite a", "Other", "vite b"])]
    assert [a.link for a in f.filter(articles)] == ["0", "2"]


def test_load_missing_file(tmp_path):
    with pytest.raises(ConfigError):
        load_keywords(str(tmp_path / "missing.txt"))


def test_load_from_file(tmp_path):
    path = tmp_path / "keywords.txt"
    path.write_text("+rust\ngc\n\n!ad\n", encoding="utf-8")
    rules = load_keywords(str(path))
    assert len(rules.groups) == 1
    assert rules.exclude_words == ["ad"]
