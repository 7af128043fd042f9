import pandas as pd
import requests
import logging

from dash import Dash, html, dcc, dash_table, Input, Output, State
import plotly.express as px
import plotly.graph_objects as go

from chat_activity_monitor import config

API_BASE = config.DASHBOARD_API_BASE
logger = logging.getLogger("visualization")

dash_app = Dash(__name__, requests_pathname_prefix=f"{config.DASHBOARD_PREFIX}/")

dash_app.layout = html.Div(
    [
        html.H1("Chat Activity Monitor Dashboard"),
        html.Div(
            [
                html.Label("Day (DD/MM/YYYY):", style={"marginRight": "8px"}),
                dcc.Input(
                    id="day-input",
                    type="text",
                    placeholder="today",
                    style={"width": "120px", "marginRight": "16px"},
                ),
                html.Button("Refresh", id="refresh-btn", n_clicks=0),
            ],
            style={"marginBottom": "16px"},
        ),
        html.Div(
            [
                html.Div(
                    [
                        html.H2("Messages by Channel"),
                        html.P("All-time raw traffic per channel, bots included."),
                        dcc.Graph(id="channel-chart"),
                    ],
                    className="chart-container",
                ),
                html.Div(
                    [
                        html.H2("Moderators vs Members"),
                        html.P("Real-user messages on the selected day."),
                        dcc.Graph(id="split-chart"),
                    ],
                    className="chart-container",
                ),
            ],
            className="chart-row",
        ),
        html.Hr(),
        html.H2("Moderator Activity"),
        dash_table.DataTable(
            id="moderator-table",
            columns=[
                {"name": "Moderator", "id": "author_display_name"},
                {"name": "Channel", "id": "channel_name"},
                {"name": "Messages", "id": "count"},
                {"name": "Deleted", "id": "deleted_count"},
            ],
            data=[],
            sort_action="native",
        ),
        html.Div(id="moderator-total", style={"marginTop": "16px"}),
    ]
)


def build_channel_figure(messages_by_channel):
    """Horizontal bar chart of the top 15 channels by message count."""
    if not messages_by_channel:
        return go.Figure().update_layout(
            title="No messages stored yet", template="plotly_white"
        )
    df = pd.DataFrame(
        [{"channel": f"#{k}", "count": v} for k, v in messages_by_channel.items()]
    )
    df = df.sort_values("count", ascending=False).head(15)
    fig = px.bar(
        df,
        y="channel",
        x="count",
        orientation="h",
        title="Top Channels by Message Count",
        color="count",
        color_continuous_scale="Viridis",
    )
    fig.update_layout(
        template="plotly_white",
        yaxis_title="Channel",
        xaxis_title="Messages",
        yaxis={"categoryorder": "total ascending"},
        margin=dict(t=50, b=0, l=0, r=0),
    )
    return fig


def build_split_figure(split):
    if not split or not split.get("total"):
        return go.Figure().update_layout(
            title="No messages found on the selected day", template="plotly_white"
        )
    df = pd.DataFrame(
        [
            {"group": "Moderators", "count": split["mod_count"]},
            {"group": "Members", "count": split["member_count"]},
        ]
    )
    fig = px.pie(
        df,
        values="count",
        names="group",
        title=f"Moderator vs Member Messages ({split['date']})",
        color_discrete_sequence=px.colors.qualitative.Plotly,
    )
    fig.update_traces(textposition="inside", textinfo="percent+label+value")
    fig.update_layout(template="plotly_white", margin=dict(t=50, b=0, l=0, r=0))
    return fig


def _day_params(day):
    return {"date": day} if day else {}


# ---- Channel chart ----
@dash_app.callback(
    Output("channel-chart", "figure"),
    Input("refresh-btn", "n_clicks"),
)
def update_channel_chart(n_clicks):
    try:
        resp = requests.get(f"{API_BASE}/messages/by-channel", timeout=10)
        return build_channel_figure(resp.json())
    except Exception as e:
        logger.error(f"Error updating channel chart: {e}")
        return go.Figure().update_layout(
            title="Error loading data", template="plotly_white"
        )


# ---- Moderator / member split ----
@dash_app.callback(
    Output("split-chart", "figure"),
    Input("refresh-btn", "n_clicks"),
    State("day-input", "value"),
)
def update_split_chart(n_clicks, day):
    try:
        resp = requests.get(
            f"{API_BASE}/moderators/split", params=_day_params(day), timeout=10
        )
        if resp.status_code != 200:
            return go.Figure().update_layout(
                title=resp.json().get("detail", "Error loading data"),
                template="plotly_white",
            )
        return build_split_figure(resp.json())
    except Exception as e:
        logger.error(f"Error updating split chart: {e}")
        return go.Figure().update_layout(
            title="Error loading data", template="plotly_white"
        )


# ---- Moderator table ----
@dash_app.callback(
    Output("moderator-table", "data"),
    Output("moderator-total", "children"),
    Input("refresh-btn", "n_clicks"),
    State("day-input", "value"),
)
def update_moderator_table(n_clicks, day):
    try:
        resp = requests.get(
            f"{API_BASE}/moderators/breakdown", params=_day_params(day), timeout=10
        )
        data = resp.json()
        if resp.status_code != 200:
            return [], html.Div(data.get("detail", "Error"), style={"color": "orange"})
        return data["groups"], html.Div(
            f"Total moderator messages on {data['date']}: {data['total']}"
        )
    except Exception as e:
        logger.error(f"Error fetching moderator breakdown: {str(e)}")
        return [], html.Div("Error retrieving data", style={"color": "red"})


def create_dash_app(fastapi_app):
    """
    Mounts the Dash app to the given FastAPI app at the dashboard prefix.
    """
    from starlette.middleware.wsgi import WSGIMiddleware

    if not hasattr(fastapi_app, "mount"):
        raise ValueError("Argument must be a FastAPI app instance.")

    # Dash app is already constructed globally as `dash_app`
    fastapi_app.mount(config.DASHBOARD_PREFIX, WSGIMiddleware(dash_app.server))
