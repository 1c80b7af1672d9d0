import pytest

from harvester.config import DEFAULT_USER_AGENT, ConfigError, load_settings


def test_defaults():
    settings = load_settings({})

    assert settings.backend_api_url == "http://localhost:3001"
    assert settings.api_key == "change-me"
    assert settings.scrape_schedule == "0 0 * * *"
    assert settings.max_retries == 3
    assert settings.retry_delay_ms == 5000
    assert settings.max_pages is None
    assert settings.start_page == 1
    assert settings.sqlite_path == "data/scraper.db"
    assert settings.disable_sqlite is False
    assert settings.backend_batch_size == 50
    assert settings.debug_html_dir == "."
    assert settings.headless is True
    assert settings.user_agent == DEFAULT_USER_AGENT
    assert settings.sync_worker_interval_ms == 60000
    assert settings.sync_target == ("http://localhost:3001", "change-me")


def test_environment_overrides():
    settings = load_settings(
        {
            "BACKEND_API_URL": "https://api.example",
            "API_KEY": "k1",
            "SYNC_API_URL": "https://sync.example",
            "SCRAPER_SERVICE_MODE": "true",
            "SCRAPER_MAX_PAGES": "4",
            "SCRAPER_START_PAGE": "2",
            "SCRAPER_ENABLE_DETAIL_IMAGES": "1",
            "SCRAPER_DISABLE_SQLITE": "yes",
            "SCRAPER_SITE_IDS": "shop-a, shop-b,,",
            "SCRAPER_DEBUG_HTML_DIR": "",
            "PLAYWRIGHT_HEADLESS": "false",
            "LOG_LEVEL": "debug",
        }
    )

    assert settings.service_mode is True
    assert settings.max_pages == 4
    assert settings.start_page == 2
    assert settings.enable_detail_images is True
    assert settings.disable_sqlite is True
    assert settings.site_ids == ["shop-a", "shop-b"]
    assert settings.debug_html_dir is None
    assert settings.headless is False
    assert settings.log_level == "DEBUG"
    assert settings.sync_target == ("https://sync.example", "k1")


def test_single_site_id_variable():
    assert load_settings({"SCRAPER_SITE_ID": "shop-a"}).site_ids == ["shop-a"]


@pytest.mark.parametrize("raw", ["abc", "0", "-3"])
def test_bad_batch_size_falls_back(raw):
    assert load_settings({"SCRAPER_BACKEND_BATCH_SIZE": raw}).backend_batch_size == 50


def test_non_positive_max_pages_means_unlimited():
    assert load_settings({"SCRAPER_MAX_PAGES": "0"}).max_pages is None


def test_non_numeric_value_is_a_config_error():
    with pytest.raises(ConfigError, match="MAX_RETRIES"):
        load_settings({"MAX_RETRIES": "lots"})
