import shutil

import pytest

pytest.importorskip("selenium")

from dash.testing.application_runners import import_app  # noqa: E402
from selenium.webdriver.common.by import By  # noqa: E402
from selenium.webdriver.support.ui import WebDriverWait  # noqa: E402

_CHROME = any(
    shutil.which(name) for name in ("google-chrome", "chromium", "chromium-browser", "chrome")
)


@pytest.mark.skipif(not _CHROME, reason="Chrome not installed")
@pytest.mark.parametrize("view", ["Clustered heatmap", "Rolling-window outliers"])
def test_dash_smoke_synthetic(dash_duo, view):
    """
    • App boots with no console errors.
    • Clicking 'Generate synthetic data' publishes a table (status alert).
    • Both analysis views render a graph.
    """
    app = import_app("trackoutliers.ui.app")
    dash_duo.start_server(app)

    dash_duo.find_element("#btn-syn").click()

    WebDriverWait(dash_duo.driver, 15, poll_frequency=0.5).until(
        lambda drv: "synthetic generator"
        in drv.find_element(By.CSS_SELECTOR, "#source-alert").text,
        message="synthetic data not published",
    )

    dash_duo.select_dcc_dropdown("#view", view)
    dash_duo.wait_for_element("#fig-container .js-plotly-plot", timeout=15)

    # Browser console must be clean
    assert dash_duo.get_logs() == []
