#!/usr/bin/env python3
"""
CPU Usage Analysis - Main Pipeline
==================================

Compares classification and regression models for predicting the share of
CPU time spent in user mode (`usr`) from 21 system-load measurements.

Phases:
    1. EDA - Statistical exploration (correlations, outliers, activity profile)
    2. Split - Seeded 2/3 train, 1/3 test partition
    3. Variant A - Correlation pruning, activity classifier bank, then
       classify-then-regress and plain regression banks under k-fold CV
    4. Variant B - PCA on training features, regression bank under k-fold CV
    5. Evaluation - Refit each variant's winner and score it on the test set

Usage:
    # Run both variants
    python main.py --data data/raw/cpu_act.csv

    # Run one variant
    python main.py --data data/raw/cpu_act.csv --variant a

    # Run with custom config
    python main.py --config config/custom.yaml
"""

import argparse
import logging
import sys
from pathlib import Path
from datetime import datetime
from typing import Dict, Any, Optional

import pandas as pd
from sklearn.preprocessing import StandardScaler

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from cpu_usage.data_loader import load_config, load_data, validate_data, print_data_summary
from cpu_usage.eda import generate_eda_report, print_correlation_insights
from cpu_usage.preprocessing import (
    DEFAULT_SEED,
    DEFAULT_SELECTED_FEATURES,
    DEFAULT_THRESHOLD,
    CorrelationPruner,
    PCAReducer,
    split_features_target,
    split_train_test,
)
from cpu_usage.model import REGRESSOR_NAMES, build_classifier_bank, build_regressor, build_two_stage
from cpu_usage.selection import (
    cross_validate_classifiers,
    cross_validate_regressors,
    pick_best,
    print_cv_table,
    select_glm_link,
    select_knn_k,
)
from cpu_usage.evaluation import evaluate_model, print_evaluation_report


def setup_logging(level: str = "INFO", log_dir: Optional[str] = None) -> None:
    """Configure logging for the pipeline."""
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_dir:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        log_file = Path(log_dir) / f'pipeline_{datetime.now().strftime("%Y%m%d_%H%M%S")}.log'
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


def run_eda(df: pd.DataFrame, config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Execute Phase 1: Exploratory Data Analysis.

    Args:
        df: Raw data
        config: Configuration dictionary

    Returns:
        EDA report dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 1: EXPLORATORY DATA ANALYSIS")
    print("=" * 70)

    report = generate_eda_report(
        df,
        target=config.get('data', {}).get('target', 'usr'),
        threshold=config.get('activity', {}).get('threshold', DEFAULT_THRESHOLD),
        z_threshold=config.get('eda', {}).get('outlier_z', 4.0)
    )
    print_correlation_insights(report, threshold=config.get('eda', {}).get('strong_correlation', 0.5))

    return report


def run_split(df: pd.DataFrame, config: Dict[str, Any]) -> Dict[str, pd.DataFrame]:
    """
    Execute Phase 2: seeded train/test split.

    Returns:
        Dictionary with 'train' and 'test' tables
    """
    print("\n" + "=" * 70)
    print("PHASE 2: TRAIN/TEST SPLIT")
    print("=" * 70)

    split_config = config.get('split', {})
    train_idx, test_idx = split_train_test(
        len(df),
        train_fraction=split_config.get('train_fraction', 2 / 3),
        seed=split_config.get('seed', DEFAULT_SEED)
    )
    print(f"Training rows: {len(train_idx)} | Test rows: {len(test_idx)}")

    return {'train': df.iloc[train_idx], 'test': df.iloc[test_idx]}


def _regression_candidates(
    names,
    glm_link: str,
    config: Dict[str, Any],
    seed: int,
    wrap=None,
    suffix: str = ""
) -> Dict[str, Any]:
    candidates = {}
    for name in names:
        reg_name = f"glm_{glm_link}" if name == "glm" else name
        regressor = build_regressor(reg_name, config, seed)
        candidates[f"{reg_name}{suffix}"] = wrap(regressor) if wrap is not None else regressor
    return candidates


def run_variant_a(
    split: Dict[str, pd.DataFrame],
    config: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Execute Phase 3: correlation pruning + classify-then-regress.

    Args:
        split: Dictionary with 'train' and 'test' tables
        config: Configuration dictionary

    Returns:
        Dictionary with CV tables, the chosen model names and the evaluation
    """
    print("\n" + "=" * 70)
    print("PHASE 3: VARIANT A - PRUNED FEATURES + ACTIVITY CLASSIFIER")
    print("=" * 70)

    target = config.get('data', {}).get('target', 'usr')
    seed = config.get('split', {}).get('seed', DEFAULT_SEED)
    threshold = config.get('activity', {}).get('threshold', DEFAULT_THRESHOLD)
    clean_config = config.get('cleaning', {})
    cls_config = config.get('classification', {})
    reg_config = config.get('regression', {})

    X_train, y_train = split_features_target(split['train'], target)
    X_test, y_test = split_features_target(split['test'], target)

    pruner = CorrelationPruner(
        n_redundant=clean_config.get('n_redundant', 6),
        selected_features=clean_config.get('selected_features', DEFAULT_SELECTED_FEATURES),
        threshold=threshold
    )
    X_train_p = pruner.fit_transform(X_train)
    X_test_p = pruner.transform(X_test)
    print(f"Dropped redundant columns: {pruner.dropped_columns}")
    print(f"Classifier features: {pruner.selected_features}")

    # Activity classifiers
    labels = pruner.labels(y_train)
    X_cls = pruner.classifier_features(X_train)
    max_k = cls_config.get('knn_max_k', 10)
    knn_k, loo_errors = select_knn_k(X_cls, labels, max_k=max_k)
    knn_k_scaled, loo_errors_scaled = select_knn_k(
        StandardScaler().fit_transform(X_cls), labels, max_k=max_k
    )
    print(f"k-NN leave-one-out: k={knn_k} (raw), k={knn_k_scaled} (scaled)")

    classifiers = build_classifier_bank(cls_config, knn_k, knn_k_scaled, seed)
    cls_table = cross_validate_classifiers(
        classifiers, X_cls, labels, n_folds=cls_config.get('n_folds', 10), seed=seed
    )
    print_cv_table(cls_table, "Activity classifiers", "misclassification rate")
    classifier_name = cls_config.get('final_model') or pick_best(cls_table)
    classifier = classifiers[classifier_name]
    print(f"Chosen classifier: {classifier_name}")

    def with_classifier(regressor):
        return build_two_stage(
            classifier, regressor, threshold,
            classifier_features=pruner.selected_features,
            regressor_features=pruner.kept_columns
        )

    n_folds = reg_config.get('n_folds', 10)
    link, link_table = select_glm_link(
        X_train_p, y_train,
        links=reg_config.get('glm_links', ['logit', 'probit', 'cloglog']),
        n_folds=n_folds, seed=seed, wrap=with_classifier
    )
    print_cv_table(link_table, "GLM link selection (with classifier)", "MSE")

    names = reg_config.get('candidates', list(REGRESSOR_NAMES))
    candidates = _regression_candidates(names, link, reg_config, seed, with_classifier, "+clf")
    if reg_config.get('baselines', True):
        candidates.update(_regression_candidates(names, link, reg_config, seed))

    reg_table = cross_validate_regressors(candidates, X_train_p, y_train, n_folds=n_folds, seed=seed)
    print_cv_table(reg_table, "Regression bank (variant A)", "MSE")

    final_name = config.get('variant_a', {}).get('final_model') or pick_best(reg_table)
    if final_name not in candidates:
        raise ValueError(f"Unknown variant A model '{final_name}'. Choose from: {list(candidates)}")

    evaluation = evaluate_model(
        candidates[final_name], X_train_p, y_train, X_test_p, y_test,
        confidence_level=config.get('evaluation', {}).get('confidence_level', 0.95),
        name=f"Variant A: {final_name}"
    )
    print_evaluation_report(evaluation['metrics'])

    return {
        'pruner': pruner,
        'knn_loo': {'raw': loo_errors, 'scaled': loo_errors_scaled},
        'classifier_cv': cls_table,
        'classifier': classifier_name,
        'glm_link': link,
        'glm_cv': link_table,
        'regression_cv': reg_table,
        'final_model': final_name,
        'evaluation': evaluation
    }


def run_variant_b(
    split: Dict[str, pd.DataFrame],
    config: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Execute Phase 4: PCA projection + regression bank.

    Args:
        split: Dictionary with 'train' and 'test' tables
        config: Configuration dictionary

    Returns:
        Dictionary with the reducer, CV tables, the chosen model and the evaluation
    """
    print("\n" + "=" * 70)
    print("PHASE 4: VARIANT B - PRINCIPAL COMPONENTS")
    print("=" * 70)

    target = config.get('data', {}).get('target', 'usr')
    seed = config.get('split', {}).get('seed', DEFAULT_SEED)
    pca_config = config.get('pca', {})
    reg_config = config.get('regression', {})

    X_train, y_train = split_features_target(split['train'], target)
    X_test, y_test = split_features_target(split['test'], target)

    reducer = PCAReducer(
        n_components=pca_config.get('n_components', 3),
        standardize=pca_config.get('standardize', False)
    )
    Z_train = reducer.fit_transform(X_train)
    Z_test = reducer.transform(X_test)

    print("Explained variance ratio:")
    for name, ratio, cumulative in zip(reducer.component_names,
                                       reducer.explained_variance_ratio_,
                                       reducer.cumulative_variance_):
        print(f"  {name}: {ratio:.4f} (cumulative {cumulative:.4f})")

    n_folds = reg_config.get('n_folds', 10)
    link, link_table = select_glm_link(
        Z_train, y_train,
        links=reg_config.get('glm_links', ['logit', 'probit', 'cloglog']),
        n_folds=n_folds, seed=seed
    )
    print_cv_table(link_table, "GLM link selection (PCA)", "MSE")

    candidates = _regression_candidates(
        reg_config.get('candidates', list(REGRESSOR_NAMES)), link, reg_config, seed
    )
    reg_table = cross_validate_regressors(candidates, Z_train, y_train, n_folds=n_folds, seed=seed)
    print_cv_table(reg_table, "Regression bank (variant B)", "MSE")

    final_name = config.get('variant_b', {}).get('final_model') or pick_best(reg_table)
    if final_name not in candidates:
        raise ValueError(f"Unknown variant B model '{final_name}'. Choose from: {list(candidates)}")

    evaluation = evaluate_model(
        candidates[final_name], Z_train, y_train, Z_test, y_test,
        confidence_level=config.get('evaluation', {}).get('confidence_level', 0.95),
        name=f"Variant B: {final_name}"
    )
    print_evaluation_report(evaluation['metrics'])

    return {
        'reducer': reducer,
        'glm_link': link,
        'glm_cv': link_table,
        'regression_cv': reg_table,
        'final_model': final_name,
        'evaluation': evaluation
    }


def run_full_pipeline(
    data_path: str,
    config: Dict[str, Any],
    variant: str = "both"
) -> Dict[str, Any]:
    """
    Execute the complete pipeline.

    Args:
        data_path: Path to input CSV file
        config: Configuration dictionary
        variant: 'a', 'b' or 'both'

    Returns:
        Dictionary containing all phase results
    """
    print("\n" + "=" * 70)
    print("CPU USAGE ANALYSIS PIPELINE")
    print(f"Started at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70)

    data_config = config.get('data', {})
    df = load_data(
        data_path,
        expected_columns=data_config.get('expected_columns', 22),
        target=data_config.get('target', 'usr')
    )
    print_data_summary(df)
    validate_data(df, target=data_config.get('target', 'usr'), strict=True)

    results = {'data_shape': df.shape}
    results['eda'] = run_eda(df, config)
    results['split'] = run_split(df, config)

    if variant in ('a', 'both'):
        results['variant_a'] = run_variant_a(results['split'], config)
    if variant in ('b', 'both'):
        results['variant_b'] = run_variant_b(results['split'], config)

    print("\n" + "=" * 70)
    print("PIPELINE COMPLETE")
    print("=" * 70)
    print(f"  • Input data: {df.shape[0]} rows × {df.shape[1]} columns")
    for key in ('variant_a', 'variant_b'):
        if key in results:
            metrics = results[key]['evaluation']['metrics']
            print(f"  • {metrics['model_name']}: R² {metrics['r2']:.4f} "
                  f"[{metrics['r2_ci_lower']:.4f}, {metrics['r2_ci_upper']:.4f}], "
                  f"NRMSE {metrics['nrmse']:.4f}")
    if 'variant_a' in results and 'variant_b' in results:
        gap = (results['variant_a']['evaluation']['metrics']['r2']
               - results['variant_b']['evaluation']['metrics']['r2'])
        print(f"  • R² gap (A - B): {gap * 100:.2f} percentage points")
    print(f"Completed at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70 + "\n")

    return results


def main():
    """Main entry point with argument parsing."""
    parser = argparse.ArgumentParser(
        description="Model comparison for CPU user-time prediction",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --data data/raw/cpu_act.csv
  python main.py --data data/raw/cpu_act.csv --variant a
  python main.py --config config/custom.yaml
        """
    )

    parser.add_argument(
        '--data', '-d',
        type=str,
        default=None,
        help='Path to the input CSV file (default: data.path from the config)'
    )

    parser.add_argument(
        '--config', '-c',
        type=str,
        default='config/config.yaml',
        help='Path to configuration file (default: config/config.yaml)'
    )

    parser.add_argument(
        '--variant',
        type=str,
        choices=['a', 'b', 'both'],
        default='both',
        help='Analysis variant to run (default: both)'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable debug logging'
    )

    args = parser.parse_args()

    if not Path(args.config).exists():
        print(f"Error: Config file not found: {args.config}")
        return 1

    config = load_config(args.config)
    log_config = config.get('logging', {})
    setup_logging('DEBUG' if args.verbose else log_config.get('level', 'INFO'),
                  log_config.get('log_dir'))

    data_path = args.data or config.get('data', {}).get('path', 'data/raw/cpu_act.csv')
    if not Path(data_path).exists():
        print(f"Error: Data file not found: {data_path}")
        print("\nExpected format: CSV with a header row, 21 numeric features and the 'usr' target")
        return 1

    try:
        run_full_pipeline(data_path, config, variant=args.variant)
        return 0

    except Exception as e:
        logging.error(f"Pipeline failed: {e}", exc_info=True)
        print(f"\n❌ Pipeline failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
