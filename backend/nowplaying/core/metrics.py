"""Prometheus metrics for the application"""
from prometheus_client import Counter, Histogram, REGISTRY

# HTTP metrics
try:
    http_requests_counter = Counter(
        'http_requests_total',
        'Total number of HTTP requests',
        ['method', 'path', 'status']
    )
except ValueError:
    http_requests_counter = REGISTRY._names_to_collectors.get('http_requests_total')

try:
    http_request_duration_histogram = Histogram(
        'http_request_duration_seconds',
        'HTTP request duration in seconds',
        ['method', 'path']
    )
except ValueError:
    http_request_duration_histogram = REGISTRY._names_to_collectors.get('http_request_duration_seconds')

# Spotify API metrics
try:
    spotify_api_requests_counter = Counter(
        'spotify_api_requests_total',
        'Total number of Spotify API requests',
        ['endpoint', 'status']
    )
except ValueError:
    spotify_api_requests_counter = REGISTRY._names_to_collectors.get('spotify_api_requests_total')

try:
    spotify_api_duration_histogram = Histogram(
        'spotify_api_request_duration_seconds',
        'Spotify API request duration in seconds',
        ['endpoint']
    )
except ValueError:
    spotify_api_duration_histogram = REGISTRY._names_to_collectors.get('spotify_api_request_duration_seconds')

try:
    spotify_token_refresh_counter = Counter(
        'spotify_token_refreshes_total',
        'Total number of on-demand Spotify token refreshes',
        ['status']
    )
except ValueError:
    spotify_token_refresh_counter = REGISTRY._names_to_collectors.get('spotify_token_refreshes_total')

# Share / post metrics
try:
    share_redirects_counter = Counter(
        'share_redirects_total',
        'Total number of share redirects',
        ['platform', 'content_type']
    )
except ValueError:
    share_redirects_counter = REGISTRY._names_to_collectors.get('share_redirects_total')

try:
    posts_counter = Counter(
        'nowplaying_posts_total',
        'Total number of now playing posts per platform',
        ['platform', 'status']
    )
except ValueError:
    posts_counter = REGISTRY._names_to_collectors.get('nowplaying_posts_total')

# OAuth metrics
try:
    oauth_callbacks_counter = Counter(
        'oauth_callbacks_total',
        'Total number of OAuth callbacks',
        ['platform', 'status']
    )
except ValueError:
    oauth_callbacks_counter = REGISTRY._names_to_collectors.get('oauth_callbacks_total')

# Cleanup metrics
try:
    cleanup_runs_counter = Counter(
        'session_cleanup_runs_total',
        'Total number of handshake session cleanup runs',
        ['status']
    )
except ValueError:
    cleanup_runs_counter = REGISTRY._names_to_collectors.get('session_cleanup_runs_total')

try:
    cleanup_sessions_removed_counter = Counter(
        'session_cleanup_removed_total',
        'Total number of expired handshake sessions removed',
        ['kind']
    )
except ValueError:
    cleanup_sessions_removed_counter = REGISTRY._names_to_collectors.get('session_cleanup_removed_total')
