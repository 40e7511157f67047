"""
CPU Usage Analysis
==================

Model comparison for predicting CPU user-time percentage from system-load
measurements.

Modules:
    - data_loader: CSV ingestion and validation
    - eda: Statistical exploration (correlations, outliers, activity)
    - preprocessing: Split, folds, activity label and feature reduction
    - model: Classifier and regressor candidates
    - selection: Cross-validated model comparison
    - evaluation: Test-set NRMSE, R² and its confidence interval
"""

__version__ = "1.0.0"
__author__ = "Predictive Analytics Team"
