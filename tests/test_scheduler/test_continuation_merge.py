from meow.scheduler import ContinuationFilter, merge_continuation


def test_merge_when_continuation_restarts_from_beginning():
    assert merge_continuation("Hello wor", "Hello world!") == "Hello world!"


def test_merge_drops_repeated_tail():
    assert merge_continuation("The answer is forty", "is forty-two.") == "The answer is forty-two."


def test_short_overlap_is_not_treated_as_repetition():
    # "a " is shorter than the minimum overlap, so both parts are kept.
    assert merge_continuation("this is a ", "a test") == "this is a a test"


def test_merge_plain_concatenation():
    assert merge_continuation("", "fresh") == "fresh"
    assert merge_continuation("Part one. ", "Part two.") == "Part one. Part two."


def test_filter_holds_back_restarted_prefix():
    stream = ContinuationFilter("def main():\n    ")
    out = [stream.feed("def "), stream.feed("main():\n"), stream.feed("    return 0\n")]

    assert out[:2] == ["", ""]
    assert "".join(out) + stream.flush() == "return 0\n"


def test_filter_passes_new_text_once_it_diverges():
    stream = ContinuationFilter("x" * 200)

    assert stream.feed("xx") == ""
    assert stream.feed("new text") == "xxnew text"
    assert stream.feed(" more") == " more"
    assert stream.flush() == ""


def test_filter_catches_long_repeated_tail_in_small_deltas():
    head = "Intro sentence that sets the scene. "
    tail = (
        "This repeated tail is considerably longer than a single streaming "
        "chunk in total length."
    )
    stream = ContinuationFilter(head + tail)
    continuation = tail + " And the new ending."

    released = [stream.feed(continuation[i:i + 4]) for i in range(0, len(continuation), 4)]
    released.append(stream.flush())

    assert len(tail) > 64
    assert "".join(released) == " And the new ending."


def test_filter_flush_resolves_short_stream():
    stream = ContinuationFilter("The quick brown fox")

    assert stream.feed("brown fox") == ""
    assert stream.flush() == ""
    assert ContinuationFilter("abc").flush() == ""
