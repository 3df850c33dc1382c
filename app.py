import streamlit as st
import pandas as pd
import sys
import os
import logging
from datetime import date, timedelta
from io import BytesIO
from reportlab.lib.pagesizes import A4
from reportlab.lib import colors
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import inch
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer, Table, TableStyle
from reportlab.lib.enums import TA_CENTER

# Engine modules live beside their tests
sys.path.append(os.path.join(os.path.dirname(os.path.abspath(__file__)), 'simpas', 'engine'))
from aggregation import (
    class_options,
    dashboard_summary,
    filter_students,
    keyed_follow_ups,
    student_stats,
    violations_frame,
)
from kv_store import JsonFileStore
from records import CATEGORY_ORDER, VIOLATION_TYPES, Category
from remote_writer import RemoteWriter
from simpas_config import settings
from sync_cycle import SyncEngine
from violation_recap import (
    calculate_recap_stats,
    determine_standing,
    generate_school_recap,
    generate_student_recap,
)

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("simpas.app")

# Page config
st.set_page_config(
    page_title=f"{settings.app_name} — Student Violation Records",
    page_icon="📋",
    layout="wide",
    initial_sidebar_state="expanded"
)

CATEGORY_COLORS = {
    Category.LIGHT: '#10b981',
    Category.MODERATE: '#f59e0b',
    Category.SEVERE: '#ef4444',
}

# Custom CSS for professional styling
st.markdown("""
<style>
    :root {
        --primary-color: #1e3a8a;
        --secondary-color: #3b82f6;
        --accent-color: #10b981;
        --text-dark: #1f2937;
        --text-light: #6b7280;
        --background-light: #f9fafb;
        --border-color: #e5e7eb;
    }

    #MainMenu {visibility: hidden;}
    footer {visibility: hidden;}

    h1 {
        color: var(--primary-color);
        font-weight: 700;
        letter-spacing: -0.02em;
    }

    .subtitle {
        color: var(--text-light);
        font-size: 1.1rem;
        font-weight: 500;
        margin-bottom: 1.5rem;
        padding-bottom: 1rem;
        border-bottom: 2px solid var(--border-color);
    }

    [data-testid="stMetricValue"] {
        font-size: 2rem;
        font-weight: 700;
        color: var(--primary-color);
    }

    [data-testid="stMetricLabel"] {
        font-size: 0.875rem;
        font-weight: 600;
        color: var(--text-light);
        text-transform: uppercase;
        letter-spacing: 0.05em;
    }

    .stDownloadButton > button {
        background-color: var(--accent-color);
        color: white;
        border: none;
        border-radius: 0.5rem;
        font-weight: 600;
    }

    .violation-card {
        background-color: white;
        border: 1px solid var(--border-color);
        border-left: 4px solid var(--secondary-color);
        border-radius: 0.5rem;
        padding: 0.75rem 1rem;
        margin-bottom: 0.5rem;
    }

    .badge {
        border-radius: 999px;
        padding: 0.1rem 0.6rem;
        font-size: 0.75rem;
        font-weight: 600;
        color: white;
    }
</style>
""", unsafe_allow_html=True)

# PDF Generation
def generate_recap_pdf(recap_text, title, subtitle):
    """Render a recap text report as a PDF"""
    buffer = BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=A4, topMargin=0.75*inch, bottomMargin=0.75*inch)
    story = []

    styles = getSampleStyleSheet()
    title_style = ParagraphStyle(
        'CustomTitle',
        parent=styles['Heading1'],
        fontSize=22,
        textColor=colors.HexColor('#1e3a8a'),
        spaceAfter=6,
        alignment=TA_CENTER
    )
    subtitle_style = ParagraphStyle(
        'CustomSubtitle',
        parent=styles['Normal'],
        fontSize=11,
        textColor=colors.HexColor('#6b7280'),
        spaceAfter=20,
        alignment=TA_CENTER
    )
    heading_style = ParagraphStyle(
        'CustomHeading',
        parent=styles['Heading2'],
        fontSize=14,
        textColor=colors.HexColor('#1e3a8a'),
        spaceBefore=12,
        spaceAfter=8,
    )
    body_style = ParagraphStyle(
        'CustomBody',
        parent=styles['Normal'],
        fontSize=10,
        textColor=colors.HexColor('#1f2937'),
        spaceAfter=4,
        leading=14
    )

    story.append(Paragraph(title, title_style))
    story.append(Paragraph(subtitle, subtitle_style))
    story.append(Spacer(1, 0.2*inch))

    for line in recap_text.split('\n'):
        line = line.strip()
        if not line or '═' in line:
            continue

        # Section headers (all caps, long)
        if line.isupper() and len(line) > 10:
            story.append(Spacer(1, 0.1*inch))
            story.append(Paragraph(line, heading_style))
        elif line.startswith('Standing:'):
            standing_table = Table([[line]], colWidths=[6.5*inch])
            standing_table.setStyle(TableStyle([
                ('BACKGROUND', (0, 0), (-1, -1), colors.HexColor('#fef3c7')),
                ('ALIGN', (0, 0), (-1, -1), 'CENTER'),
                ('FONTNAME', (0, 0), (-1, -1), 'Helvetica-Bold'),
                ('FONTSIZE', (0, 0), (-1, -1), 12),
                ('TOPPADDING', (0, 0), (-1, -1), 8),
                ('BOTTOMPADDING', (0, 0), (-1, -1), 8),
            ]))
            story.append(standing_table)
        elif line.startswith(('Total', 'Pending:')):
            story.append(Paragraph(f"<b>{line}</b>", body_style))
        else:
            story.append(Paragraph(line, body_style))

    story.append(Spacer(1, 0.4*inch))
    footer_style = ParagraphStyle(
        'Footer',
        parent=styles['Normal'],
        fontSize=9,
        textColor=colors.HexColor('#9ca3af'),
        alignment=TA_CENTER
    )
    story.append(Paragraph(f"{settings.app_name} | {settings.school_name}", footer_style))

    doc.build(story)
    buffer.seek(0)
    return buffer

def clean_filename(text):
    return text.replace(' ', '_').replace(',', '').replace('/', '-')

def get_engine():
    """One engine per browser session, sharing the on-disk store"""
    if 'engine' not in st.session_state:
        store = JsonFileStore(settings.store_path)
        writer = RemoteWriter(settings.script_url, timeout=settings.request_timeout_seconds)
        engine = SyncEngine(
            store=store,
            students_url=settings.students_csv_url,
            violations_url=settings.violations_csv_url,
            writer=writer,
            timeout=settings.request_timeout_seconds,
            recent_window=timedelta(minutes=settings.recent_write_window_minutes),
            manual_refresh_floor=settings.manual_refresh_floor_seconds,
        )
        with st.spinner("Loading data..."):
            engine.run_cycle()
        st.session_state.engine = engine
    return st.session_state.engine

def show_notice(notice):
    if notice is None:
        return
    icons = {'success': '✅', 'warning': '⚠️', 'error': '❌'}
    st.toast(notice.message, icon=icons.get(notice.level, 'ℹ️'))

def category_badge(category):
    return f"<span class='badge' style='background-color: {CATEGORY_COLORS[category]};'>{category.value}</span>"

# Login gate
if not st.session_state.get('logged_in'):
    st.markdown(f"# 📋 {settings.app_name}")
    st.markdown('<div class="subtitle">Student Violation Records</div>', unsafe_allow_html=True)
    with st.form("login"):
        username = st.text_input("Username")
        password = st.text_input("Password", type="password")
        if st.form_submit_button("Log in", type="primary"):
            if username == settings.login_username and password == settings.login_password:
                st.session_state.logged_in = True
                logger.info("User %s logged in", username)
                st.rerun()
            else:
                st.error("❌ Wrong username or password")
    st.stop()

engine = get_engine()

# Sidebar
with st.sidebar:
    st.markdown(f"## {settings.app_name}")
    st.markdown(f"**{settings.school_name}**")

    if st.button("🔄 Refresh data", use_container_width=True):
        with st.spinner("Loading the latest data..."):
            snapshot = engine.run_cycle(manual=True)
        show_notice(snapshot.notice)

    @st.fragment(run_every=settings.refresh_interval_seconds)
    def auto_refresh():
        before = engine.snapshot
        age = engine.clock() - before.completed_at if before.completed_at else None
        if age is not None and age < timedelta(seconds=settings.refresh_interval_seconds - 1):
            after = before
        else:
            after = engine.run_cycle()
        if after.notice is not None and after.notice.level == 'error':
            st.caption(f"⚠️ {after.notice.message}")
        if after.completed_at:
            st.caption(f"Last synced: {after.completed_at.astimezone().strftime('%H:%M:%S')}")
        if after.students != before.students or after.violations != before.violations:
            st.rerun(scope="app")

    auto_refresh()

    if engine.snapshot.served_from_cache:
        st.warning("Offline data in use")

    st.markdown("---")
    if st.button("Log out", use_container_width=True):
        st.session_state.logged_in = False
        st.rerun()

snapshot = engine.snapshot

# Header
st.markdown(f"# 📋 {settings.app_name}")
st.markdown('<div class="subtitle">Student Violation Records | Follow-up Tracking</div>', unsafe_allow_html=True)

if snapshot.notice is not None and snapshot.notice.level == "error" and not snapshot.students:
    st.error(f"❌ {snapshot.notice.message}")

tab_dashboard, tab_input, tab_follow_up, tab_students = st.tabs(
    ["📊 Dashboard", "📝 Record Violation", "✅ Follow-up", "👥 Students"]
)

# Dashboard: sheet-confirmed records only
with tab_dashboard:
    confirmed = snapshot.confirmed_violations
    summary = dashboard_summary(confirmed, recent_limit=settings.recent_limit)

    col1, col2, col3, col4 = st.columns(4)
    with col1:
        st.metric("Total Violations", f"{summary.total:,}")
    with col2:
        st.metric("Students Involved", f"{summary.students_involved:,}")
    with col3:
        st.metric("Awaiting Follow-up", f"{summary.pending:,}")
    with col4:
        st.metric("Resolved", f"{summary.resolved:,}")

    left, right = st.columns([3, 2])
    with left:
        st.markdown("### Recent Violations")
        if not summary.recent:
            st.info("No violations recorded yet")
        for v in summary.recent:
            st.markdown(
                f"<div class='violation-card'><b>{v.full_name}</b> · {v.class_label} "
                f"{category_badge(v.category)}<br>{v.violation_type_label} · {v.occurrence_date}</div>",
                unsafe_allow_html=True,
            )
    with right:
        st.markdown("### By Category")
        chart = pd.DataFrame(
            {'count': [summary.histogram[c] for c in CATEGORY_ORDER]},
            index=[c.value for c in CATEGORY_ORDER],
        )
        st.bar_chart(chart)

    st.markdown("<br>", unsafe_allow_html=True)
    period_name = st.text_input("Recap period", value=date.today().strftime("%B %Y"))
    try:
        stats = calculate_recap_stats(confirmed)
        recap = generate_school_recap(confirmed, stats, school_name=settings.school_name, period_name=period_name)
        with st.expander("📄 School recap", expanded=False):
            st.text(recap)
        st.download_button(
            label="📥 Download School Recap (PDF)",
            data=generate_recap_pdf(recap, "School Violation Recap", f"{settings.school_name} — {period_name}"),
            file_name=f"school_recap_{clean_filename(period_name)}.pdf",
            mime="application/pdf",
            use_container_width=True
        )
    except Exception as e:
        logger.exception("School recap failed")
        st.error(f"❌ Error building recap: {str(e)}")
        with st.expander("See error details"):
            st.exception(e)

# New violation entry
with tab_input:
    st.markdown("### Record a Violation")
    options = class_options(snapshot.students)
    if not options:
        st.warning("⚠️ No student data loaded yet")
    else:
        selected_class = st.selectbox(
            "Class",
            options=[o.value for o in options],
            format_func=lambda value: next(o.label for o in options if o.value == value),
        )
        in_class = filter_students(snapshot.students, class_id=selected_class)

        with st.form("new_violation", clear_on_submit=True):
            student = st.selectbox(
                "Student",
                options=in_class,
                format_func=lambda s: f"{s.full_name} ({s.student_number})",
            )
            violation_type = st.selectbox(
                "Violation type",
                options=list(VIOLATION_TYPES),
                format_func=lambda vt: f"{vt.label} — {vt.category.value}, {vt.points} points",
            )
            occurred_on = st.date_input("Date", value=date.today())
            location = st.text_input("Location")
            description = st.text_area("Description")
            reporter = st.text_input("Reported by")
            st.caption(f"Next code: {snapshot.next_code}")

            if st.form_submit_button("💾 Save", type="primary", use_container_width=True):
                try:
                    outcome = engine.add_violation(
                        student,
                        violation_type.label,
                        occurrence_date=occurred_on,
                        location=location,
                        description=description,
                        reporter=reporter,
                    )
                except ValueError as e:
                    st.error(f"❌ {e}")
                else:
                    if outcome.delivered:
                        st.success(f"✅ Saved {outcome.violation.violation_code}")
                    else:
                        st.error("❌ Could not send to the spreadsheet. Please try again.")

# Follow-up queue: sheet-confirmed pending records only
with tab_follow_up:
    queue = keyed_follow_ups(snapshot.confirmed_violations)
    st.markdown(f"### Awaiting Follow-up ({len(queue)})")
    if not queue:
        st.success("✅ Every violation has been followed up")
    for queue_key, v in queue:
        with st.expander(f"{v.violation_code} · {v.full_name} · {v.violation_type_label}"):
            st.markdown(
                f"{category_badge(v.category)} {v.point_value} points · {v.location or '-'} · {v.occurrence_date}",
                unsafe_allow_html=True,
            )
            if v.description:
                st.markdown(v.description)
            with st.form(f"resolve_{queue_key}"):
                result = st.text_area("Follow-up result", key=f"result_{queue_key}")
                if st.form_submit_button("Mark as resolved", type="primary"):
                    try:
                        outcome = engine.resolve_follow_up(v, result)
                    except ValueError as e:
                        st.error(f"❌ {e}")
                    else:
                        if outcome.delivered:
                            st.success("✅ Follow-up saved")
                        else:
                            st.warning("⚠️ Could not reach the spreadsheet (saved locally)")
                        st.rerun()

# Student list with point totals over the full merged set
with tab_students:
    points = student_stats(snapshot.students, snapshot.violations)
    options = class_options(snapshot.students)

    col1, col2 = st.columns([2, 1])
    with col1:
        search = st.text_input("Search name or student number")
    with col2:
        class_filter = st.selectbox(
            "Class filter",
            options=[''] + [o.value for o in options],
            format_func=lambda value: 'All classes' if not value else next(o.label for o in options if o.value == value),
        )

    listed = filter_students(snapshot.students, class_id=class_filter, search=search)
    table = pd.DataFrame([
        {
            'Student Number': s.student_number,
            'Name': s.full_name,
            'Class': s.class_label,
            'Cases': points[s.student_number].case_count,
            'Points': points[s.student_number].total_points,
            'Standing': determine_standing(points[s.student_number].total_points),
        }
        for s in listed
    ])
    st.dataframe(table, use_container_width=True, hide_index=True)

    if listed:
        chosen = st.selectbox(
            "Student detail",
            options=listed,
            format_func=lambda s: f"{s.full_name} ({s.student_number})",
        )
        detail = points[chosen.student_number]
        col1, col2 = st.columns(2)
        with col1:
            st.metric("Total Points", detail.total_points)
        with col2:
            st.metric("Cases", detail.case_count)
        if detail.violations:
            st.dataframe(violations_frame(detail.violations), use_container_width=True, hide_index=True)

        student_recap = generate_student_recap(chosen, detail, school_name=settings.school_name)
        st.download_button(
            label="📥 Download Student Recap (PDF)",
            data=generate_recap_pdf(student_recap, "Student Violation Recap", f"{chosen.full_name} — {chosen.class_label}"),
            file_name=f"student_recap_{clean_filename(chosen.student_number)}.pdf",
            mime="application/pdf",
            use_container_width=True
        )
