from usageprobe.text import (
    LineKind,
    classify_line,
    compact,
    credits_figure,
    first_line_of_kind,
    normalized_lines,
    percent_left,
    reset_description,
    strip_ansi,
)

SCREEN = (
    "\x1b[2J\x1b[H\x1b[1mCodex\x1b[0m status\r\n"
    "\x1b]0;codex\x07Credits: 1,234.50\r\n"
    "5h limit: [#####     ] 42% left (resets 14:30)\r\n"
    "Weekly limit: [##        ] 80% left (resets Oct 21)\r\n"
    "GPT-5.3-Codex-Spark limit: 12% used (resets Oct 22)\r\n"
)


class TestStripAnsi:
    def test_removes_escape_sequences(self) -> "None":
        text = strip_ansi("\x1b[31mred\x1b[0m \x1b]8;;http://x\x1b\\link\x1b]8;;\x1b\\")
        assert text == "red link"

    def test_folds_carriage_returns(self) -> "None":
        assert strip_ansi("a\r\nb\rc") == "a\nb\nc"

    def test_is_idempotent(self) -> "None":
        once = strip_ansi(SCREEN)
        assert strip_ansi(once) == once

    def test_drops_stray_controls(self) -> "None":
        assert strip_ansi("a\x07b\x00c\td") == "abc\td"


class TestNormalizedLines:
    def test_trims_and_skips_empty(self) -> "None":
        assert normalized_lines("  one \r\n\r\n\x1b[1m two\x1b[0m\n") == ["one", "two"]

    def test_compact(self) -> "None":
        assert compact(" Current  Week\n(all models) ") == "currentweek(allmodels)"


class TestClassifyLine:
    def test_five_hour_variants(self) -> "None":
        for line in ("5h limit: 10% left", "5-hour limit 3%", "5 hour window"):
            assert classify_line(line) is LineKind.FIVE_HOUR

    def test_weekly_variants(self) -> "None":
        for line in ("Weekly limit: 1% left", "7-day usage", "7 day window", "7d: 5%"):
            assert classify_line(line) is LineKind.WEEKLY

    def test_spark_line_is_never_weekly(self) -> "None":
        line = "Spark weekly limit: 12% left"
        assert classify_line(line) is LineKind.SECONDARY

    def test_spark_line_is_never_five_hour(self) -> "None":
        assert classify_line("Spark 5h limit: 40% left") is LineKind.SECONDARY

    def test_spark_mention_without_limit_terms(self) -> "None":
        assert classify_line("Model: gpt-5.3-codex-spark") is None

    def test_7d_needs_word_boundary(self) -> "None":
        assert classify_line("build 17d3 finished") is None

    def test_label_beats_reset_text(self) -> "None":
        assert classify_line("Weekly limit: 70% left (resets in 2d 5h)") is LineKind.WEEKLY
        assert classify_line("5h limit: 42% left (resets 7d)") is LineKind.FIVE_HOUR

    def test_fifteen_hours_is_not_five_hour(self) -> "None":
        assert classify_line("Weekly limit: 70% left (resets in 15h)") is LineKind.WEEKLY
        assert classify_line("resets in 15h") is None

    def test_weekly_found_when_reset_mentions_5h(self) -> "None":
        lines = normalized_lines(
            "5h limit: 42% left (resets in 3h 10m)\nWeekly limit: 70% left (resets in 2d 5h)"
        )
        assert first_line_of_kind(lines, LineKind.FIVE_HOUR).startswith("5h limit")
        assert first_line_of_kind(lines, LineKind.WEEKLY).startswith("Weekly limit")

    def test_first_line_of_kind(self) -> "None":
        lines = normalized_lines(SCREEN)
        assert first_line_of_kind(lines, LineKind.WEEKLY).startswith("Weekly limit")
        assert first_line_of_kind(lines, LineKind.SECONDARY).startswith("GPT-5.3")


class TestPercentLeft:
    def test_left(self) -> "None":
        assert percent_left("5h limit: 42% left") == 42.0

    def test_used_is_inverted(self) -> "None":
        assert percent_left("Spark: 12% used") == 88.0

    def test_bare_percent_is_left(self) -> "None":
        assert percent_left("Weekly 80%") == 80.0

    def test_none_without_percent(self) -> "None":
        assert percent_left("Weekly limit") is None


class TestResetAndCredits:
    def test_reset_description(self) -> "None":
        assert reset_description("5h limit: 42% left (resets 14:30)") == "resets 14:30"

    def test_reset_description_missing(self) -> "None":
        assert reset_description("5h limit: 42% left") is None

    def test_credits_figure(self) -> "None":
        assert credits_figure(strip_ansi(SCREEN)) == 1234.5

    def test_credits_missing(self) -> "None":
        assert credits_figure("no credits here") is None
