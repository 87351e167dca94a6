import argparse

import pytest

from tkresults.flags import GetOptions, ListOptions, add_get_flags, add_list_flags


def _list_parser():
    return add_list_flags(argparse.ArgumentParser(prog="list"))


def _get_parser():
    return add_get_flags(argparse.ArgumentParser(prog="get"))


def test_list_defaults():
    opts = ListOptions.from_namespace(_list_parser().parse_args([]))
    assert opts == ListOptions()
    assert opts.format == "tab"


def test_list_short_flags():
    ns = _list_parser().parse_args(["-f", "data_type=='x'", "-l", "5", "-p", "token", "-o", "json"])
    assert ListOptions.from_namespace(ns) == ListOptions(
        filter="data_type=='x'", limit=5, page_token="token", format="json"
    )


def test_list_long_flags():
    ns = _list_parser().parse_args(
        ["--filter", "a", "--limit", "7", "--page", "token", "--output", "textproto"]
    )
    opts = ListOptions.from_namespace(ns)
    assert (opts.filter, opts.limit, opts.page_token, opts.format) == ("a", 7, "token", "textproto")


def test_list_limit_accepts_int32_max():
    ns = _list_parser().parse_args(["-l", "2147483647"])
    assert ns.limit == 2147483647


@pytest.mark.parametrize("value", ["abc", "2147483648", "-2147483649"])
def test_list_limit_rejects_invalid(value):
    with pytest.raises(SystemExit):
        _list_parser().parse_args(["-l", value])


def test_get_defaults():
    opts = GetOptions.from_namespace(_get_parser().parse_args([]))
    assert opts == GetOptions()
    assert opts.format == "json"


def test_get_output_flag():
    ns = _get_parser().parse_args(["--output", "textproto"])
    assert GetOptions.from_namespace(ns).format == "textproto"


def test_add_flags_return_same_parser():
    parser = argparse.ArgumentParser()
    assert add_list_flags(parser) is parser