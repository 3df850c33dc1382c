"""
SIMPAS Violation Recap
School-wide and per-student recap reports built from the merged data.
Deterministic text output; app.py renders it to PDF.
"""

import hashlib
from datetime import datetime

from aggregation import category_histogram, class_rank, normalize_class, violations_frame
from records import CATEGORY_ORDER, FollowUpStatus

# ============================================================================
# CONFIGURATION
# ============================================================================

RULE = "═" * 75

# Point thresholds for a student's standing (cumulative points)
STANDING_THRESHOLDS = [
    (100, "CALL PARENTS"),
    (50, "WRITTEN WARNING"),
    (25, "COUNSELING"),
    (0, "MONITOR"),
]

# ============================================================================
# STATISTICS CALCULATION
# ============================================================================

def calculate_recap_stats(violations):
    """Totals, category shares and follow-up backlog"""

    total = len(violations)
    histogram = category_histogram(violations)
    pending = sum(1 for v in violations if v.follow_up_status is FollowUpStatus.PENDING)

    stats = {
        'total_violations': total,
        'students_involved': len({v.student_number for v in violations}),
        'total_points': sum(v.point_value for v in violations),
        'pending_count': pending,
        'resolved_count': total - pending,
        'pending_pct': (pending / total * 100) if total > 0 else 0,
    }
    for category in CATEGORY_ORDER:
        count = histogram[category]
        stats[f'{category.value}_count'] = count
        stats[f'{category.value}_pct'] = (count / total * 100) if total > 0 else 0

    return stats

def determine_standing(total_points):
    """Map cumulative points to the school's follow-up standing"""
    for threshold, standing in STANDING_THRESHOLDS:
        if total_points >= threshold:
            return standing
    return "MONITOR"

# ============================================================================
# REPORT GENERATION
# ============================================================================

def _section(title):
    return f"{RULE}\n{title}\n{RULE}\n\n"

def _data_hash(df):
    return hashlib.md5(df.to_csv(index=False).encode()).hexdigest()[:8]

def generate_school_recap(violations, stats, school_name="Sekolah", period_name="Current Period", top_n=5):
    """School recap: status, category breakdown, hotspots, class pressure, backlog"""

    df = violations_frame(violations)

    report = "\n" + _section("SCHOOL VIOLATION RECAP")
    report += f"School: {school_name}\n"
    report += f"Period: {period_name}\n"
    report += f"Data Hash: {_data_hash(df)}\n"
    report += f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n\n"

    # ========== SUMMARY ==========
    report += _section("VIOLATION SUMMARY")
    report += f"Total Violations: {stats['total_violations']}\n"
    report += f"Students Involved: {stats['students_involved']}\n"
    report += f"Total Points Issued: {stats['total_points']}\n\n"
    report += "Category Breakdown:\n"
    for category in CATEGORY_ORDER:
        report += (
            f"  {category.value}: {stats[f'{category.value}_count']} "
            f"({stats[f'{category.value}_pct']:.1f}%)\n"
        )
    report += "\n"

    if df.empty:
        report += "No violations recorded for this period.\n\n"
        report += RULE + "\n"
        return report

    # ========== TOP VIOLATION TYPES ==========
    report += _section("TOP VIOLATION TYPES")
    type_analysis = df.groupby('violation_type_label').agg(
        cases=('violation_code', 'count'),
        points=('point_value', 'sum'),
    ).reset_index().sort_values(['cases', 'points'], ascending=False)
    for _, row in type_analysis.head(top_n).iterrows():
        report += f"{row['violation_type_label']}: {row['cases']} cases, {row['points']} points\n"
    report += "\n"

    # ========== LOCATION HOTSPOTS ==========
    report += _section("LOCATION HOTSPOTS")
    located = df[df['location'].str.strip() != '']
    location_analysis = located.groupby('location').agg(
        cases=('violation_code', 'count'),
    ).reset_index().sort_values('cases', ascending=False)
    if location_analysis.empty:
        report += "No locations recorded.\n"
    for _, row in location_analysis.head(3).iterrows():
        report += f"{row['location']}: {row['cases']} cases\n"
    report += "\n"

    # ========== CLASS PRESSURE ==========
    report += _section("CLASS PRESSURE ANALYSIS")
    df['class_id'] = df['class_label'].apply(normalize_class)
    class_analysis = df.groupby('class_id').agg(
        cases=('violation_code', 'count'),
        points=('point_value', 'sum'),
        students=('student_number', 'nunique'),
    ).reset_index()
    class_analysis['rank'] = class_analysis['class_id'].apply(class_rank)
    class_analysis = class_analysis.sort_values(['rank', 'class_id'])
    for _, row in class_analysis.iterrows():
        label = row['class_id'] or '(no class)'
        report += f"Class {label}: {row['cases']} cases, {row['points']} points, {row['students']} students\n"
    report += "\n"

    # ========== FOLLOW-UP BACKLOG ==========
    report += _section("FOLLOW-UP BACKLOG")
    report += f"Pending: {stats['pending_count']} ({stats['pending_pct']:.1f}%)\n"
    report += f"Resolved: {stats['resolved_count']}\n\n"
    backlog = df[df['follow_up_status'] == FollowUpStatus.PENDING.value].sort_values('created_at')
    for _, row in backlog.head(top_n).iterrows():
        report += f"{row['violation_code']} {row['full_name']} ({row['class_label']}): {row['violation_type_label']}\n"
    report += "\n"

    report += RULE + "\n"
    return report

def generate_student_recap(student, stats, school_name="Sekolah"):
    """Per-student recap: identity, standing, and every recorded case"""

    standing = determine_standing(stats.total_points)

    report = "\n" + _section("STUDENT VIOLATION RECAP")
    report += f"School: {school_name}\n"
    report += f"Name: {student.full_name}\n"
    report += f"Student Number: {student.student_number}\n"
    report += f"Class: {student.class_label}\n"
    report += f"Homeroom Teacher: {student.homeroom_teacher}\n"
    report += f"Parent Contact: {student.parent_contact}\n"
    report += f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n\n"

    report += _section("STANDING")
    report += f"Total Points: {stats.total_points}\n"
    report += f"Total Cases: {stats.case_count}\n"
    report += f"Standing: {standing}\n\n"

    report += _section("CASE HISTORY")
    if not stats.violations:
        report += "No violations recorded.\n\n"
    for v in sorted(stats.violations, key=lambda v: v.created_at, reverse=True):
        report += f"{v.occurrence_date or '-'} | {v.violation_code} | {v.violation_type_label} ({v.category.value}, {v.point_value} points)\n"
        report += f"  Status: {v.follow_up_status.value}\n"
        if v.follow_up_result:
            report += f"  Result: {v.follow_up_result}\n"
    report += "\n" + RULE + "\n"
    return report
