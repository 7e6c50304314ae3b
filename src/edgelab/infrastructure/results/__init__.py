"""Result persistence, export formats, chart data and benchmark comparison."""
