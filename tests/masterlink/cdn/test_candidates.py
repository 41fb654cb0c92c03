import pytest

from masterlink.cdn.candidates import (
    NO_VARIANT_RANK,
    generate_candidates,
    join_url,
    normalize_path,
    parse_extensions,
    sanitize_urls,
    sort_by_variant,
    split_storage_key,
    variant_rank,
)


class TestSplitStorageKey:
    def test_nested_key(self):
        assert split_storage_key("jobs/abc/mix.wav") == ("jobs/abc", "mix", "wav")

    def test_dotted_directory_keeps_name_intact(self):
        assert split_storage_key("a.b/c/track.final.mp3") == ("a.b/c", "track.final", "mp3")

    def test_no_directory(self):
        assert split_storage_key("mix.wav") == ("", "mix", "wav")

    def test_no_extension(self):
        assert split_storage_key("jobs/abc/mix") == ("jobs/abc", "mix", "")


class TestGenerateCandidates:
    def test_contains_expected_layouts(self):
        """Both the mastered-folder variant and the same-folder re-encode are guessed."""
        candidates = generate_candidates("jobs/abc/mix.wav", ["mp3", "wav"])

        assert "jobs/abc/mastered/mix_v1.mp3" in candidates
        assert "jobs/abc/mix.mp3" in candidates
        assert "jobs/abc/render/mix/mix_v1.wav" in candidates
        assert "jobs/abc/export/v2.mp3" in candidates

    def test_order_is_folder_then_extension_then_pattern(self):
        candidates = generate_candidates("jobs/abc/mix.wav", ["mp3", "wav"])

        assert candidates[0] == "jobs/abc/mix_v1.mp3"
        assert candidates[5] == "jobs/abc/mix.mp3"
        # all mp3 patterns of the own folder come before its first wav pattern
        assert candidates.index("jobs/abc/mix_v1.wav") == 12
        assert candidates.index("jobs/abc/mix/mix.wav") < candidates.index("jobs/abc/mastered/mix_v1.mp3")

    def test_no_duplicates_and_no_leading_or_double_slashes(self):
        candidates = generate_candidates("mix.wav", ["mp3", "wav", "mp3"])

        assert len(candidates) == len(set(candidates))
        assert all(not c.startswith("/") and "//" not in c for c in candidates)
        assert candidates[0] == "mix_v1.mp3"
        assert "mastered/mix_v1.mp3" in candidates

    def test_name_placeholder_replaced_everywhere(self):
        candidates = generate_candidates("jobs/abc/mix.wav", ["mp3"])

        assert "jobs/abc/mix/mix_v1.mp3" in candidates
        assert "jobs/abc/mix/mix.mp3" in candidates
        assert not any("{" in c or "}" in c for c in candidates)

    def test_size_is_bounded(self):
        candidates = generate_candidates("jobs/abc/mix.wav", ["mp3", "wav", "m4a", "flac"])

        assert len(candidates) <= 8 * 4 * 12


class TestUrlHelpers:
    @pytest.mark.parametrize(
        "host",
        ["d123.cloudfront.net", "https://d123.cloudfront.net", "http://d123.cloudfront.net/"],
    )
    def test_join_url_normalizes_host(self, host):
        assert join_url(host, "jobs/abc/mix_v1.mp3") == "https://d123.cloudfront.net/jobs/abc/mix_v1.mp3"

    def test_join_url_encodes_segments_but_not_slashes(self):
        assert join_url("cdn.example.com", "/jobs/my mix/#1.mp3") == "https://cdn.example.com/jobs/my%20mix/%231.mp3"

    def test_normalize_path(self):
        assert normalize_path("//jobs///abc//mix.mp3") == "jobs/abc/mix.mp3"

    def test_parse_extensions(self):
        assert parse_extensions(" MP3, .wav,, ") == ["mp3", "wav"]
        assert parse_extensions(None, ["wav"]) == ["wav"]
        assert parse_extensions(" , ", ["m4a"]) == ["m4a"]


class TestVariantRanking:
    def test_variant_rank(self):
        assert variant_rank("https://cdn/x/mix_v3.mp3") == 3
        assert variant_rank("https://cdn/x/mix_V12.WAV") == 12
        assert variant_rank("https://cdn/x/mix.mp3") == NO_VARIANT_RANK
        assert variant_rank("https://cdn/x/v2.mp3") == NO_VARIANT_RANK

    def test_sort_is_stable_for_equal_ranks(self):
        urls = ["a/mix.mp3", "a/mix_v2.mp3", "b/mix.mp3", "a/mix_v1.wav"]

        assert sort_by_variant(urls) == ["a/mix_v1.wav", "a/mix_v2.mp3", "a/mix.mp3", "b/mix.mp3"]

    def test_sanitize_drops_templates_and_duplicates(self):
        urls = ["https://cdn/a.mp3", "", "https://cdn/{N}.mp3", "https://cdn/%7BF%7D/a.mp3", "https://cdn/a.mp3"]

        assert sanitize_urls(urls) == ["https://cdn/a.mp3"]
